import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, String, Text, Uuid, func, text
from sqlalchemy.orm import relationship

from twofactor.db.base import Base
from twofactor.models.types import UTCDateTime


class SetupSessionStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class TwoFactorSetupSession(Base):
    """One provisioning attempt: start, show QR, confirm. Rows are kept as an audit trail."""

    __tablename__ = "two_factor_setup_sessions"
    __table_args__ = (
        Index("ix_two_factor_setup_sessions_user_status", "user_id", "status"),
        Index("ix_two_factor_setup_sessions_expires_at", "expires_at"),
        # At most one pending session per user.
        Index(
            "uq_two_factor_setup_sessions_one_pending",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'expired', 'cancelled')",
            name="ck_two_factor_setup_sessions_status",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token = Column(String(36), nullable=False, unique=True)
    status = Column(String(16), nullable=False, default=SetupSessionStatus.PENDING.value)
    shown_at = Column(UTCDateTime, nullable=True)
    expires_at = Column(UTCDateTime, nullable=False)
    confirmed_at = Column(UTCDateTime, nullable=True)
    attempts = Column(Integer, nullable=False, default=0, server_default="0")
    last_attempt_at = Column(UTCDateTime, nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, server_default=func.now())
    updated_at = Column(
        UTCDateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    user = relationship("User", back_populates="setup_sessions")

    @property
    def session_status(self) -> SetupSessionStatus:
        return SetupSessionStatus(self.status)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at
