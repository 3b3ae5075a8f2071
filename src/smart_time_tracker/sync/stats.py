"""Quick per-domain summary of server-side logs for the CLI."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import aiohttp

from smart_time_tracker.core.errors import TransientTransportFailure
from smart_time_tracker.core.models import round_half_up


@dataclass(frozen=True)
class DomainTotal:
    domain: str
    seconds: float
    percent: int


async def fetch_logs(
    api_url: str,
    user_id: str,
    *,
    session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession,
) -> list[dict[str, Any]]:
    """Fetch the newest stored logs for ``user_id``."""
    url = f"{api_url.rstrip('/')}/api/logs"
    try:
        async with session_factory() as session:
            async with session.get(url, params={"user_id": user_id}) as resp:
                if resp.status != 200:
                    raise TransientTransportFailure(f"Server responded {resp.status}", status=resp.status)
                data = await resp.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
        raise TransientTransportFailure(f"Failed to load logs: {e}") from e

    return data if isinstance(data, list) else []


def top_domains(logs: list[dict[str, Any]], limit: int = 3) -> list[DomainTotal]:
    """Total time per domain, largest first, with each domain's share of all time."""
    totals: dict[str, float] = {}
    for log in logs:
        domain = log.get("domain")
        duration = log.get("duration")
        if not isinstance(domain, str) or not isinstance(duration, (int, float)):
            continue
        totals[domain] = totals.get(domain, 0.0) + duration

    grand_total = sum(totals.values())
    if grand_total <= 0:
        return []

    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)[:limit]
    return [
        DomainTotal(domain=domain, seconds=seconds, percent=min(100, round_half_up(seconds / grand_total * 100)))
        for domain, seconds in ranked
    ]


def format_duration(seconds: float) -> str:
    """``2h`` above an hour, minutes otherwise."""
    if seconds > 3600:
        return f"{int(seconds // 3600)}h"
    return f"{round_half_up(seconds / 60)}m"
