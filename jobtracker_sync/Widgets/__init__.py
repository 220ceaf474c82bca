# jobtracker_sync/Widgets/__init__.py
