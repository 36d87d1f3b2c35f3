from datetime import datetime, timedelta, timezone
import secrets
from typing import Callable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import sessionmaker

from otp_auth.database import session_scope
from otp_auth.models.session import SessionEntry


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """Server-side refresh sessions backing the refresh JWTs."""

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        *,
        refresh_days: int = 30,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._refresh_days = refresh_days
        self._clock = clock

    def create_session(self, user_id: int) -> str:
        now = self._clock()
        token = secrets.token_urlsafe(32)
        expires_at = now + timedelta(days=self._refresh_days)
        with session_scope(self._session_factory) as session:
            session.execute(
                delete(SessionEntry)
                .where(SessionEntry.expires_at <= now)
                .execution_options(synchronize_session=False)
            )
            session.add(
                SessionEntry(
                    token=token,
                    user_id=user_id,
                    created_at=now,
                    expires_at=expires_at,
                    revoked_at=None,
                )
            )
        return token

    def revoke_session(self, token: str) -> bool:
        now = self._clock()
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(SessionEntry)
                .where(SessionEntry.token == token, SessionEntry.revoked_at.is_(None))
                .values(revoked_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    def get_user_id(self, token: str) -> int | None:
        now = self._clock()
        with session_scope(self._session_factory) as session:
            result = session.execute(
                select(SessionEntry.user_id).where(
                    SessionEntry.token == token,
                    SessionEntry.revoked_at.is_(None),
                    SessionEntry.expires_at > now,
                )
            )
            return result.scalar_one_or_none()
