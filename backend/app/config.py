"""Application configuration."""
from collections import Counter
from functools import lru_cache
import math

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "Gatekeeper"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    public_base_url: str = "http://localhost:3000"

    # Database
    database_url: str = "sqlite:///./data/gatekeeper.db"

    # Auth
    secret_key: str
    algorithm: str = "HS256"
    session_cookie_name: str = "gatekeeper_session"
    csrf_cookie_name: str = "gatekeeper_csrf"
    session_cookie_path: str = "/"
    session_cookie_samesite: str = "lax"
    session_expire_days: int = 30
    session_activity_throttle_seconds: int = 60
    session_revoke_grace_seconds: int = 60
    reaper_interval_seconds: int = 300

    # Two-factor
    two_factor_issuer: str = "Gatekeeper"
    two_factor_token_expire_minutes: int = 10
    two_factor_max_attempts: int = 5
    two_factor_encryption_key: str | None = None
    backup_code_count: int = 10

    # Verification codes
    verification_code_expire_minutes: int = 5
    email_verify_daily_limit: int = 10
    password_reset_daily_limit: int = 5
    code_attempt_limit: int = 5
    code_attempt_window_minutes: int = 5
    password_reset_cooldown_hours: int = 24
    password_change_cooldown_minutes: int = 60

    # Device metadata
    geolocation_enabled: bool = True
    geolocation_url: str = "https://ipapi.co"
    geolocation_timeout_seconds: float = 2.0

    # Email
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from_email: str = "noreply@gatekeeper.local"
    login_alerts_enabled: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def session_cookie_secure(self) -> bool:
        return self.environment == "production"

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, value: str) -> str:
        """Fail closed if SECRET_KEY is weak or placeholder quality."""
        if not value:
            raise ValueError("SECRET_KEY must be set.")

        if len(value) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")

        weak_values = {"changeme", "changeme-in-production", "secret", "password", "test"}
        lowered = value.lower()
        if lowered in weak_values or "changeme" in lowered:
            raise ValueError("SECRET_KEY must not be a placeholder value.")

        counts = Counter(value)
        entropy_per_char = -sum((count / len(value)) * math.log2(count / len(value)) for count in counts.values())
        estimated_entropy_bits = entropy_per_char * len(value)
        if estimated_entropy_bits < 100:
            raise ValueError("SECRET_KEY entropy is too low; use a cryptographically random value.")

        return value

    @field_validator("session_cookie_samesite")
    @classmethod
    def validate_samesite(cls, value: str) -> str:
        lowered = value.lower()
        if lowered not in {"lax", "strict", "none"}:
            raise ValueError("SESSION_COOKIE_SAMESITE must be lax, strict or none.")
        return lowered


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
