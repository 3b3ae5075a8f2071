"""Upload of local records and client-side pairing."""

from smart_time_tracker.sync.cloud_sync import SyncEngine, SyncOutcome, SyncResult
from smart_time_tracker.sync.pairing import PairingClient, PairingResult

__all__ = ["SyncEngine", "SyncOutcome", "SyncResult", "PairingClient", "PairingResult"]
