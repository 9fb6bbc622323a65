"""REST endpoints for meeting scheduling.

Every response is ``{"data": ...}`` on success; failures are rendered as
``{"error": "..."}`` by the handlers in src.crm.api.errors. All endpoints
require authentication and tenant context.

Google Calendar sync is best-effort: a meeting created without a join
link is still a 201, and clients tell the two apart by checking
``meeting_link``.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from src.crm.api.deps import get_current_user, get_tenant
from src.crm.config import get_settings
from src.crm.core.tenant import TenantContext
from src.crm.meetings.errors import MeetingNotFoundError, MeetingValidationError
from src.crm.meetings.schemas import (
    MeetingCreateRequest,
    MeetingFilter,
    MeetingStatus,
    MeetingUpdateRequest,
    MeetingView,
    RsvpRequest,
    UserSummary,
)
from src.crm.models.tenant import User

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/meetings", tags=["meetings"])

ALL = "all"


# ── Dependency Injection Helpers ─────────────────────────────────────────────


def _get_meeting_repository(request: Request) -> Any:
    """Retrieve MeetingRepository from app.state, 503 if not available."""
    repo = getattr(request.app.state, "meeting_repository", None)
    if repo is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Meeting repository not initialized",
        )
    return repo


def _get_coordinator(request: Request) -> Any:
    """Retrieve MeetingCoordinator from app.state, 503 if not available."""
    coordinator = getattr(request.app.state, "meeting_coordinator", None)
    if coordinator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Meeting coordinator not initialized",
        )
    return coordinator


def _build_filter(
    status_value: str | None,
    date_from: str | None,
    date_to: str | None,
    organizer_id: str | None,
    view: str | None,
) -> MeetingFilter:
    """Turn raw query parameters into a MeetingFilter; 'all' means no filter."""
    try:
        return MeetingFilter(
            status=MeetingStatus(status_value) if status_value and status_value != ALL else None,
            date_from=datetime.fromisoformat(date_from) if date_from else None,
            date_to=datetime.fromisoformat(date_to) if date_to else None,
            organizer_id=uuid.UUID(organizer_id) if organizer_id and organizer_id != ALL else None,
            view=MeetingView(view) if view else MeetingView.ALL,
        )
    except ValueError as exc:
        raise MeetingValidationError(f"Invalid filter: {exc}") from exc


# ── REST Endpoints ───────────────────────────────────────────────────────────


@router.get("")
async def list_meetings(
    request: Request,
    status_value: str | None = Query(default=None, alias="status"),
    date_from: str | None = Query(default=None, description="Start of range (ISO format)"),
    date_to: str | None = Query(default=None, description="End of range (ISO format)"),
    organizer_id: str | None = Query(default=None),
    view: str | None = Query(default=None, description="today | upcoming | past | all"),
    user: User = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> dict:
    """List meetings with organizer, participants and lead, by start time."""
    repo = _get_meeting_repository(request)
    flt = _build_filter(status_value, date_from, date_to, organizer_id, view)
    meetings = await repo.list_meetings(
        tenant.tenant_id,
        flt,
        day_timezone=get_settings().DEFAULT_MEETING_TIMEZONE,
    )
    return {"data": [m.model_dump(mode="json") for m in meetings]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_meeting(
    body: MeetingCreateRequest,
    request: Request,
    user: User = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> dict:
    """Create a meeting; the caller becomes its organizer."""
    coordinator = _get_coordinator(request)
    meeting = await coordinator.create(
        tenant.tenant_id, UserSummary.model_validate(user), body
    )
    return {"data": meeting.model_dump(mode="json")}


@router.get("/{meeting_id}")
async def get_meeting(
    meeting_id: uuid.UUID,
    request: Request,
    user: User = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> dict:
    """Get a meeting with organizer, participants and lead."""
    repo = _get_meeting_repository(request)
    meeting = await repo.get_meeting(tenant.tenant_id, meeting_id)
    if meeting is None:
        raise MeetingNotFoundError(str(meeting_id))
    return {"data": meeting.model_dump(mode="json")}


@router.put("/{meeting_id}")
async def update_meeting(
    meeting_id: uuid.UUID,
    body: MeetingUpdateRequest,
    request: Request,
    user: User = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> dict:
    """Update a meeting. A ``participants`` list replaces the invitees."""
    coordinator = _get_coordinator(request)
    meeting = await coordinator.update(tenant.tenant_id, meeting_id, body)
    return {"data": meeting.model_dump(mode="json")}


@router.delete("/{meeting_id}")
async def delete_meeting(
    meeting_id: uuid.UUID,
    request: Request,
    user: User = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> dict:
    """Cancel the calendar event, notify participants and delete the meeting."""
    coordinator = _get_coordinator(request)
    await coordinator.delete(tenant.tenant_id, meeting_id)
    return {"data": {"id": str(meeting_id), "deleted": True}}


@router.post("/{meeting_id}/rsvp")
async def respond_to_meeting(
    meeting_id: uuid.UUID,
    body: RsvpRequest,
    request: Request,
    user: User = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> dict:
    """Accept, decline or tentatively accept an invitation."""
    coordinator = _get_coordinator(request)
    participant = await coordinator.respond(
        tenant.tenant_id, meeting_id, UserSummary.model_validate(user), body.status
    )
    return {"data": participant.model_dump(mode="json")}
