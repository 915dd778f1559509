"""Verification code and attempt ledger models."""
import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from app.database import Base


class VerificationType(str, enum.Enum):
    EMAIL_VERIFY = "EMAIL_VERIFY"
    PASSWORD_RESET = "PASSWORD_RESET"


class AttemptKind(str, enum.Enum):
    ISSUE = "ISSUE"  # a code was sent
    REDEEM = "REDEEM"  # a code was submitted


class VerificationToken(Base):
    """One issuance of a 6-digit code. Superseded, never updated."""

    __tablename__ = "verification_tokens"
    __table_args__ = (
        Index("ix_verification_tokens_email_purpose", "email", "purpose"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    token = Column(String(64), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=False)
    code = Column(String(6), nullable=False)
    purpose = Column(String(20), nullable=False)
    expires_at = Column(String(26), nullable=False)
    created_at = Column(String(26), default=lambda: datetime.utcnow().isoformat())


class VerificationAttempt(Base):
    """Append-only ledger behind the issuance and redemption rate windows."""

    __tablename__ = "verification_attempts"
    __table_args__ = (
        Index("ix_verification_attempts_window", "email", "type", "kind", "timestamp"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    token = Column(String(64), index=True)  # set on password-reset issuance rows only
    type = Column(String(20), nullable=False)
    kind = Column(String(10), nullable=False)
    timestamp = Column(String(26), nullable=False, default=lambda: datetime.utcnow().isoformat())
    success = Column(Integer, default=0, nullable=False)  # SQLite boolean

    user = relationship("User", back_populates="verification_attempts")
