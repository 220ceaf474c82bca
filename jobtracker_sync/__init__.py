# jobtracker_sync/__init__.py
# Description: Offline-first sync engine for the job tracker's local store.
#
__version__ = "0.1.0"
