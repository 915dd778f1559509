"""User model."""
import uuid
from datetime import datetime

from sqlalchemy import Column, Integer, String, Text
from sqlalchemy.orm import relationship

from app.database import Base


class User(Base):
    """User account."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(100))
    password_hash = Column(String(255))  # NULL for OAuth-only accounts
    email_verified_at = Column(String(26))
    last_password_update = Column(String(26))
    password_update_count = Column(Integer, default=0)

    # Two-factor
    two_factor_enabled = Column(Integer, default=0)  # SQLite boolean
    two_factor_secret = Column(Text)  # Fernet ciphertext
    backup_codes = Column(Text, default="[]")  # JSON array of SHA-256 digests

    created_at = Column(String(26), default=lambda: datetime.utcnow().isoformat())
    updated_at = Column(String(26), default=lambda: datetime.utcnow().isoformat(), onupdate=lambda: datetime.utcnow().isoformat())

    # Relationships
    sessions = relationship("DeviceSession", back_populates="user", cascade="all, delete-orphan")
    two_factor_tokens = relationship("TwoFactorToken", back_populates="user", cascade="all, delete-orphan")
    verification_attempts = relationship("VerificationAttempt", back_populates="user", cascade="all, delete-orphan")
