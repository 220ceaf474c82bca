# jobtracker_sync/Screens/__init__.py
