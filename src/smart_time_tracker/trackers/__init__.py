"""Activity tracking components."""

from smart_time_tracker.trackers.browser_source import MacBrowserProbe, PollingBrowserSource
from smart_time_tracker.trackers.events import IdleChanged, IdleState, TabChanged, TabInfo
from smart_time_tracker.trackers.session_tracker import SessionTracker

__all__ = [
    "MacBrowserProbe",
    "PollingBrowserSource",
    "SessionTracker",
    "IdleChanged",
    "IdleState",
    "TabChanged",
    "TabInfo",
]
