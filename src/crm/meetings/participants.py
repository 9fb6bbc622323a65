"""Participant roster reconciliation.

Pure functions that decide which participant rows a meeting should have
and which attendee emails to send to Google Calendar. The organizer is
always present exactly once (role organizer, RSVP accepted) and is never
taken from the requested list.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone

from src.crm.meetings.schemas import (
    ParticipantCreate,
    ParticipantRequest,
    ParticipantRole,
    RsvpStatus,
)


def organizer_row(
    organizer_id: uuid.UUID,
    name: str | None = None,
    email: str | None = None,
) -> ParticipantCreate:
    return ParticipantCreate(
        user_id=organizer_id,
        email=email,
        name=name,
        role=ParticipantRole.ORGANIZER,
        rsvp_status=RsvpStatus.ACCEPTED,
        responded_at=datetime.now(timezone.utc),
    )


def invitee_rows(
    organizer_id: uuid.UUID,
    requested: Iterable[ParticipantRequest],
    organizer_email: str | None = None,
) -> list[ParticipantCreate]:
    """Rows for every requested participant other than the organizer.

    Entries naming the organizer (by user id or email) are dropped, as are
    repeated user ids and repeated email-only guests. Entries with neither a
    user id nor an email are ignored. Every row starts at RSVP pending.
    """
    organizer_key = organizer_email.lower() if organizer_email else None
    seen_users: set[uuid.UUID] = {organizer_id}
    seen_emails: set[str] = set()
    rows: list[ParticipantCreate] = []

    for entry in requested:
        if entry.user_id is not None:
            if entry.user_id in seen_users:
                continue
            seen_users.add(entry.user_id)
        elif entry.email:
            key = entry.email.lower()
            if key == organizer_key or key in seen_emails:
                continue
            seen_emails.add(key)
        else:
            continue

        rows.append(
            ParticipantCreate(
                user_id=entry.user_id,
                email=entry.email,
                name=entry.name,
                role=entry.role,
                rsvp_status=RsvpStatus.PENDING,
            )
        )
    return rows


def roster_for_create(
    organizer_id: uuid.UUID,
    requested: Iterable[ParticipantRequest],
    organizer_name: str | None = None,
    organizer_email: str | None = None,
) -> list[ParticipantCreate]:
    """Full roster for a new meeting: organizer first, then invitees."""
    return [
        organizer_row(organizer_id, organizer_name, organizer_email),
        *invitee_rows(organizer_id, requested, organizer_email),
    ]


def roster_for_update(
    organizer_id: uuid.UUID,
    requested: Iterable[ParticipantRequest],
    organizer_email: str | None = None,
) -> list[ParticipantCreate]:
    """Replacement non-organizer rows for an edited meeting.

    The caller deletes every existing non-organizer row first, so all
    invitees come back as RSVP pending, including unchanged ones.
    """
    return invitee_rows(organizer_id, requested, organizer_email)


def user_ids_to_resolve(
    requested: Iterable[ParticipantRequest],
    organizer_id: uuid.UUID,
) -> list[uuid.UUID]:
    """User ids whose emails must be looked up to build the attendee list."""
    ids: list[uuid.UUID] = []
    for entry in requested:
        if entry.user_id is None or entry.user_id == organizer_id:
            continue
        if entry.user_id not in ids:
            ids.append(entry.user_id)
    return ids


def attendee_emails(
    requested: Sequence[ParticipantRequest],
    user_emails: Mapping[uuid.UUID, str],
    organizer_id: uuid.UUID,
    organizer_email: str | None = None,
) -> list[str]:
    """Emails to invite on the calendar event.

    Literal emails come first, then the emails of requested user ids.
    Duplicates are removed case-insensitively, keeping the first spelling,
    and the organizer is never included.
    """
    excluded = {organizer_email.lower()} if organizer_email else set()
    organizer_lookup = user_emails.get(organizer_id)
    if organizer_lookup:
        excluded.add(organizer_lookup.lower())

    candidates = [entry.email for entry in requested if entry.email]
    candidates += [
        user_emails[user_id]
        for user_id in user_ids_to_resolve(requested, organizer_id)
        if user_emails.get(user_id)
    ]

    emails: list[str] = []
    seen: set[str] = set(excluded)
    for email in candidates:
        key = email.lower()
        if key in seen:
            continue
        seen.add(key)
        emails.append(email)
    return emails
