from sqlalchemy import Boolean, Column, DateTime, Integer, String, UniqueConstraint

from otp_auth.database import Base


class UserEntry(Base):
    __tablename__ = "user_details"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), nullable=True, unique=True)
    mobile_number = Column(String(15), nullable=True)
    country_code = Column(String(8), nullable=True)
    full_name = Column(String(100), nullable=False, default="User")
    age = Column(Integer, nullable=True)
    institution = Column(String(255), nullable=True)
    is_email_verified = Column(Boolean, nullable=False, default=False)
    is_mobile_verified = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("mobile_number", "country_code", name="uq_user_mobile"),
    )
