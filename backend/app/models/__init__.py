"""SQLAlchemy models package."""
from app.models.user import User
from app.models.session import DeviceSession
from app.models.two_factor import TwoFactorToken
from app.models.verification import (
    AttemptKind,
    VerificationAttempt,
    VerificationToken,
    VerificationType,
)

__all__ = [
    "User",
    "DeviceSession",
    "TwoFactorToken",
    "VerificationToken",
    "VerificationAttempt",
    "VerificationType",
    "AttemptKind",
]
