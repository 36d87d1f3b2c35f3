from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String

from otp_auth.database import Base


class OtpEntry(Base):
    __tablename__ = "otp_details"

    id = Column(Integer, primary_key=True)
    identifier = Column(String(255), nullable=False)
    identifier_type = Column(String(16), nullable=False)
    code = Column(String(10), nullable=False)
    purpose = Column(String(32), nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    is_used = Column(Boolean, nullable=False, default=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    session_token = Column(String(128), nullable=True)
    # Held only by the current OTP of an (identifier, type, purpose) key.
    active_slot = Column(String(320), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_otp_lookup", "identifier", "identifier_type", "purpose"),
        Index("ix_otp_expires_at", "expires_at"),
        Index("ix_otp_session_token", "session_token"),
    )
