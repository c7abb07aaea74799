"""
Top-level watch_manager imports
"""

# Local
from .threads import WatchThread, WorkerThread
from .watch_manager import WatchManager
from .work_queue import WorkQueue
