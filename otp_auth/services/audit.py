from datetime import datetime, timezone
import logging
from typing import Callable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import sessionmaker

from otp_auth.database import session_scope
from otp_auth.models.audit_log import APPLICATION_LOG, AuditLogEntry

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditLogStore:
    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def record(self, event: str, message: str = "", level: str = "info") -> None:
        with session_scope(self._session_factory) as session:
            session.add(
                AuditLogEntry(
                    kind=APPLICATION_LOG,
                    level=level,
                    event=event,
                    message=message,
                    created_at=self._clock(),
                )
            )

    def count(self) -> int:
        with session_scope(self._session_factory) as session:
            return session.execute(
                select(func.count()).select_from(AuditLogEntry)
            ).scalar_one()

    def purge_older_than(self, cutoff: datetime) -> int:
        """Delete application log rows created before ``cutoff``."""
        with session_scope(self._session_factory) as session:
            deleted = session.execute(
                delete(AuditLogEntry)
                .where(
                    AuditLogEntry.kind == APPLICATION_LOG,
                    AuditLogEntry.created_at < cutoff,
                )
                .execution_options(synchronize_session=False)
            ).rowcount
        LOGGER.info("Deleted %d application log entries before %s", deleted, cutoff)
        return deleted
