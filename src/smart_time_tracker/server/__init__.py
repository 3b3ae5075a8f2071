"""Ingestion server: pairing codes, bearer tokens and log storage."""

from smart_time_tracker.server.app import build_services, create_app, run_server

__all__ = ["build_services", "create_app", "run_server"]
