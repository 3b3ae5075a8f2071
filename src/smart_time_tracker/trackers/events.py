"""Abstract tracker events and the collaborators that produce them."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Union


class IdleState(str, Enum):
    """User presence as reported by the environment."""

    ACTIVE = "active"
    IDLE = "idle"
    LOCKED = "locked"


@dataclass(frozen=True)
class TabInfo:
    """The foreground tab as seen by an event source."""

    id: str
    url: str | None


@dataclass(frozen=True)
class TabChanged:
    """The focused tab changed, or its URL did."""

    tab_id: str


@dataclass(frozen=True)
class IdleChanged:
    """The user went idle, locked the screen, or came back."""

    state: IdleState


@dataclass(frozen=True)
class CloseSession:
    """Explicit request to close the active session (shutdown)."""


TrackerEvent = Union[TabChanged, IdleChanged, CloseSession]


class TabResolver(Protocol):
    """Looks tabs up on behalf of the session tracker."""

    async def get_tab(self, tab_id: str) -> TabInfo:
        """Return the tab, raising ``TabUnavailable`` if it is gone."""
        ...

    async def active_tab(self) -> TabInfo | None:
        """Return the foreground tab, if any."""
        ...


class EventSink(Protocol):
    """Anything that accepts tracker events (the tracker inbox)."""

    def submit(self, event: TrackerEvent) -> None:
        ...
