"""Pending two-factor login handles."""
import uuid
from datetime import datetime

from sqlalchemy import Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.database import Base


class TwoFactorToken(Base):
    """Password verified, second factor outstanding. Never a session."""

    __tablename__ = "two_factor_tokens"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at = Column(String(26), nullable=False)
    used = Column(Integer, default=0, nullable=False)  # SQLite boolean
    failed_attempts = Column(Integer, default=0, nullable=False)
    created_at = Column(String(26), default=lambda: datetime.utcnow().isoformat())

    user = relationship("User", back_populates="two_factor_tokens")
