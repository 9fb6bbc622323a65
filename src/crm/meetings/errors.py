"""Exceptions raised by the meeting services.

Each carries the HTTP status the API layer should answer with; the
handlers in src.crm.api.errors turn them into ``{"error": message}``.
"""

from __future__ import annotations


class MeetingError(Exception):
    """Base class for meeting scheduling failures."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MeetingNotFoundError(MeetingError):
    status_code = 404

    def __init__(self, meeting_id: str) -> None:
        super().__init__("Meeting not found")
        self.meeting_id = meeting_id


class MeetingValidationError(MeetingError):
    status_code = 422


class InvalidStatusTransitionError(MeetingError):
    """Raised when an update tries to move a cancelled meeting elsewhere."""

    status_code = 409


class MeetingStoreError(MeetingError):
    """The row store rejected a read or write."""

    status_code = 500


class ParticipantNotFoundError(MeetingError):
    status_code = 404

    def __init__(self, meeting_id: str, user_id: str) -> None:
        super().__init__("You are not a participant of this meeting")
        self.meeting_id = meeting_id
        self.user_id = user_id
