"""Allow running as ``python -m smart_time_tracker``."""

from smart_time_tracker.cli.main import app

app()
