"""Client-side persistence: database, log queue and state slots."""

from smart_time_tracker.storage.client_state import ClientState
from smart_time_tracker.storage.database import Database, init_database
from smart_time_tracker.storage.log_queue import LogQueue, QueueSnapshot

__all__ = ["ClientState", "Database", "init_database", "LogQueue", "QueueSnapshot"]
