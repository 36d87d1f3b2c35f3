from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from otp_auth.database import Base

APPLICATION_LOG = "application_log"


class AuditLogEntry(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    kind = Column(String(32), nullable=False, default=APPLICATION_LOG)
    level = Column(String(16), nullable=False, default="info")
    event = Column(String(64), nullable=False)
    message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_audit_logs_kind_created", "kind", "created_at"),)
