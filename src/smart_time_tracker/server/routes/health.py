"""Service banner and health check."""

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from smart_time_tracker.server.deps import ServicesDep

router = APIRouter(tags=["health"])


@router.get("/", response_class=PlainTextResponse)
def root() -> str:
    return "Smart Time Tracker API is running!"


@router.get("/health")
def health(services: ServicesDep) -> dict:
    """Liveness plus post-sweep sizes of the code and token stores."""
    return {
        "ok": True,
        "pairingCodes": services.pairing.count(),
        "tokens": services.tokens.count(),
    }
