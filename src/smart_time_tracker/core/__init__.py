"""Core configuration, value types and errors."""

from smart_time_tracker.core.config import Config, get_config
from smart_time_tracker.core.models import LogRecord, Session

__all__ = ["Config", "get_config", "LogRecord", "Session"]
