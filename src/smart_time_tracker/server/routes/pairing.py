"""Pairing API: the dashboard starts, the extension finishes."""

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel

from smart_time_tracker.server.deps import ServicesDep

router = APIRouter(tags=["pairing"])


class PairStartRequest(BaseModel):
    # Loosely typed on purpose; the service normalizes and validates
    user_id: Any = None


class PairStartResponse(BaseModel):
    pair_code: str
    expires_in_seconds: int


class PairFinishRequest(BaseModel):
    pair_code: Any = None


class PairFinishResponse(BaseModel):
    extension_token: str
    user_id: str
    token_expires_in_seconds: int


@router.post("/pair/start", response_model=PairStartResponse)
def pair_start(data: PairStartRequest, services: ServicesDep) -> PairStartResponse:
    """Issue a one-time code for a signed-in dashboard user.

    The user id is taken from the body; nothing here verifies that the
    caller owns it.
    """
    issued = services.pairing.start(data.user_id)
    return PairStartResponse(pair_code=issued.pair_code, expires_in_seconds=issued.expires_in_seconds)


@router.post("/pair/finish", response_model=PairFinishResponse)
def pair_finish(data: PairFinishRequest, services: ServicesDep) -> PairFinishResponse:
    """Exchange a code typed into the extension for a bearer token."""
    issued = services.pairing.finish(data.pair_code)
    return PairFinishResponse(
        extension_token=issued.extension_token,
        user_id=issued.user_id,
        token_expires_in_seconds=issued.token_expires_in_seconds,
    )
