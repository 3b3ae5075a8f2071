"""HTTP routes for the ingestion server."""

from smart_time_tracker.server.routes import health, logs, pairing

__all__ = ["health", "logs", "pairing"]
