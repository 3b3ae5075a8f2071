"""Log ingestion and retrieval."""

from typing import Any

from fastapi import APIRouter, Header, Query
from pydantic import BaseModel

from smart_time_tracker.server.deps import ServicesDep
from smart_time_tracker.server.ingestion import extract_bearer_token

router = APIRouter(tags=["logs"])


class LogBatch(BaseModel):
    logs: Any = None
    user_id: Any = None  # legacy identity, used only without a bearer token


class IngestResponse(BaseModel):
    success: bool
    inserted: int


@router.post("/logs", response_model=IngestResponse)
def ingest_logs(
    data: LogBatch,
    services: ServicesDep,
    authorization: str | None = Header(default=None),
) -> IngestResponse:
    """Receive a batch of activity logs from a tracker client."""
    inserted = services.ingestion.ingest(
        data.logs,
        bearer_token=extract_bearer_token(authorization),
        legacy_user_id=data.user_id,
    )
    return IngestResponse(success=True, inserted=inserted)


@router.get("/logs")
def list_logs(
    services: ServicesDep,
    user_id: str | None = Query(None),
    start_date: str | None = Query(None, description="YYYY-MM-DD, inclusive"),
    end_date: str | None = Query(None, description="YYYY-MM-DD, inclusive"),
) -> list[dict[str, Any]]:
    """Stored logs, newest first."""
    return services.ingestion.list_logs(user_id, start_date, end_date)
