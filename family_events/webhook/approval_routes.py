"""Approval ledger API routes: status counts per channel and recent requests."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query

from family_events.db.repositories import approval_repo, event_repo

router = APIRouter(prefix="/approvals", tags=["approvals"])


def _parse_datetime_param(value: Optional[str]) -> Optional[datetime]:
    """Parse optional ISO date or datetime query param (naive values are UTC)."""
    if not value or not value.strip():
        return None
    try:
        s = value.strip().replace("Z", "+00:00")
        if len(s) <= 10:
            return datetime.fromisoformat(s + "T00:00:00+00:00")
        parsed = datetime.fromisoformat(s)
    except (ValueError, TypeError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@router.get("/counts")
async def approval_counts(
    from_: Optional[str] = Query(None, alias="from", description="ISO date or datetime (inclusive)"),
    to: Optional[str] = Query(None, description="ISO date or datetime (inclusive)"),
) -> dict[str, Any]:
    """Counts per channel and status, plus totals per status, for requests sent in the range."""
    by_channel = await asyncio.to_thread(
        approval_repo.counts_by_status, _parse_datetime_param(from_), _parse_datetime_param(to)
    )
    totals: dict[str, int] = {}
    for statuses in by_channel.values():
        for status, count in statuses.items():
            totals[status] = totals.get(status, 0) + count
    return {"by_channel": by_channel, "totals": totals, "from": from_, "to": to}


@router.get("/recent")
async def recent_approvals(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    status: Optional[str] = Query(None),
    event_id: Optional[int] = Query(None),
) -> dict[str, Any]:
    rows = await asyncio.to_thread(approval_repo.list_requests, limit, offset, status, event_id)
    return {"items": [approval_repo.to_dict(r) for r in rows], "limit": limit, "offset": offset}


@router.get("/events/{event_id}")
async def event_approvals(event_id: int) -> dict[str, Any]:
    """One event's status with its full ledger history."""
    event = await asyncio.to_thread(event_repo.get_event, event_id)
    if event is None:
        raise HTTPException(status_code=404, detail=f"Event not found: {event_id}")
    rows = await asyncio.to_thread(approval_repo.list_requests, 500, 0, None, event_id)
    return {
        "event_id": event.id,
        "title": event.title,
        "status": event.status,
        "requests": [approval_repo.to_dict(r) for r in rows],
    }
