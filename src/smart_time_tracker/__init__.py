"""Smart Time Tracker - per-domain browsing time tracking."""

__version__ = "0.1.0"
