"""Device session model."""
import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from app.database import Base


class DeviceSession(Base):
    """A signed-in device. Revoked rows linger until the sweep deletes them."""

    __tablename__ = "sessions"
    __table_args__ = (
        Index("ix_sessions_user_active", "user_id", "is_revoked", "expires_at"),
        Index("ix_sessions_revoked_at", "is_revoked", "revoked_at"),
        CheckConstraint(
            "(is_revoked = 0 AND revoked_at IS NULL) OR (is_revoked = 1 AND revoked_at IS NOT NULL)",
            name="ck_sessions_revoked_consistent",
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    expires_at = Column(String(26), nullable=False)
    created_at = Column(String(26), default=lambda: datetime.utcnow().isoformat())
    last_active_at = Column(String(26), nullable=False)

    # Device metadata
    device_name = Column(String(100))
    user_agent = Column(String(255))
    ip_address = Column(String(45))
    location = Column(String(255))

    # Revocation
    is_revoked = Column(Integer, default=0, nullable=False)  # SQLite boolean
    revoked_at = Column(String(26))
    revoked_by = Column(String(36))  # Session id that performed the revoke
    purge_after = Column(String(26))  # Earliest time the sweep may delete the row

    user = relationship("User", back_populates="sessions")

    def is_active(self, now: datetime) -> bool:
        return not self.is_revoked and self.expires_at > now.isoformat()
