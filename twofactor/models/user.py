import uuid

from sqlalchemy import Boolean, Column, Integer, String, Text, Uuid, func, true
from sqlalchemy.orm import relationship

from twofactor.db.base import Base
from twofactor.models.types import UTCDateTime


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    token_version = Column(Integer, nullable=False, default=0, server_default="0")
    # Fernet tokens; see twofactor.core.crypto
    two_factor_secret = Column(Text, nullable=True)
    two_factor_recovery_codes = Column(Text, nullable=True)
    two_factor_confirmed_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, server_default=func.now())
    updated_at = Column(
        UTCDateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    setup_sessions = relationship(
        "TwoFactorSetupSession", back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def has_two_factor_secret(self) -> bool:
        return self.two_factor_secret is not None

    @property
    def two_factor_confirmed(self) -> bool:
        return self.two_factor_secret is not None and self.two_factor_confirmed_at is not None
