"""Periodic cleanup of revoked sessions and lapsed one-time tokens.

Run from cron with ``python -m app.services.reaper`` or let the API process
schedule it (see ``app.main``). Every pass is a plain database query, so
missed or duplicated runs are harmless.
"""
import asyncio
from datetime import datetime
import logging

from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import get_db_context
from app.models.two_factor import TwoFactorToken
from app.models.verification import VerificationToken
from app.services.sessions import purge_revoked_sessions

logger = logging.getLogger(__name__)
settings = get_settings()


def run_sweep(db: Session, now: datetime | None = None) -> dict:
    """Delete everything past its lifetime. Returns per-table counts."""
    now = now or datetime.utcnow()
    sessions = purge_revoked_sessions(db, now)

    two_factor_tokens = db.query(TwoFactorToken).filter(
        (TwoFactorToken.expires_at <= now.isoformat()) | (TwoFactorToken.used == 1),
    ).delete(synchronize_session=False)

    verification_tokens = db.query(VerificationToken).filter(
        VerificationToken.expires_at <= now.isoformat(),
    ).delete(synchronize_session=False)

    return {
        "sessions": sessions,
        "two_factor_tokens": two_factor_tokens,
        "verification_tokens": verification_tokens,
    }


def sweep_once() -> dict:
    with get_db_context() as db:
        result = run_sweep(db)
    logger.info(f"Sweep finished: {result}")
    return result


async def run_periodically(interval_seconds: int) -> None:
    """Sweep forever; failures are logged and retried next interval."""
    while True:
        try:
            await asyncio.to_thread(sweep_once)
        except Exception as e:
            logger.error(f"Sweep failed: {e}")
        await asyncio.sleep(interval_seconds)


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level)
    sweep_once()
