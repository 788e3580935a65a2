"""Authentication models for user accounts."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from refloop.storage.models import Base


class UserAccount(Base):
    """Local mirror of an identity-provider user.

    The identity provider owns sign-up and email verification; this table only
    keeps what the referral program needs (email for masking and lookups,
    verification flag for referral completion).
    """
    __tablename__ = "user_accounts"

    id = Column(Integer, primary_key=True)

    # Identity
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    email_verified = Column(Boolean, default=False)

    # Status
    is_active = Column(Boolean, default=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<UserAccount(id={self.id}, email={self.email})>"
