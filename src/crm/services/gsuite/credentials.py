"""Per-user Google credential storage on the tenant users table.

Reads and writes go through the service session (see
src.crm.core.database.get_service_session) so token rotation can be
written back even when no end user is attached to the connection.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm.models.tenant import User
from src.crm.services.gsuite.models import OAuthTokens, StoredCredential

logger = structlog.get_logger(__name__)


class CredentialStore:
    """Load and save the google_* token columns of a user.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: uuid.UUID) -> StoredCredential | None:
        """Return the user's credential, or None if the user does not exist."""
        async for session in self._session_factory():
            stmt = select(
                User.id,
                User.email,
                User.google_access_token,
                User.google_refresh_token,
                User.google_token_expiry,
            ).where(User.id == user_id)
            row = (await session.execute(stmt)).one_or_none()
            if row is None:
                return None
            return StoredCredential(
                user_id=row.id,
                email=row.email,
                access_token=row.google_access_token,
                refresh_token=row.google_refresh_token,
                expiry=row.google_token_expiry,
            )
        return None

    async def save(self, user_id: uuid.UUID, tokens: OAuthTokens) -> None:
        """Write freshly issued tokens.

        The refresh token is only overwritten when Google issued a new one.
        Concurrent saves for the same user are last-write-wins.
        """
        values: dict = {
            "google_access_token": tokens.access_token,
            "google_token_expiry": tokens.expiry,
        }
        if tokens.refresh_token:
            values["google_refresh_token"] = tokens.refresh_token

        async for session in self._session_factory():
            try:
                await session.execute(
                    update(User).where(User.id == user_id).values(**values)
                )
                await session.commit()
            except SQLAlchemyError:
                await session.rollback()
                logger.exception("google_credential_save_failed", user_id=str(user_id))
                raise
            logger.info(
                "google_credential_saved",
                user_id=str(user_id),
                rotated_refresh_token="google_refresh_token" in values,
            )

    async def is_connected(self, user_id: uuid.UUID) -> bool:
        """A user is connected once an access token has been stored."""
        credential = await self.get(user_id)
        return credential is not None and credential.is_connected
