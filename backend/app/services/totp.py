"""TOTP (RFC 6238) secrets, codes and provisioning for authenticator apps.

Codes use a 30-second step and accept one step of clock drift either way.
Secrets are stored encrypted with Fernet (AES-CBC + HMAC) under a key taken
from TWO_FACTOR_ENCRYPTION_KEY, or derived from SECRET_KEY with HKDF when no
dedicated key is configured.
"""
import base64
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
import logging
import re

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
import pyotp
import qrcode
import qrcode.image.svg

from app.config import get_settings
from app.services.backup_codes import generate_backup_codes

logger = logging.getLogger(__name__)
settings = get_settings()

TOTP_DIGITS = 6
TOTP_INTERVAL = 30
TOTP_VALID_WINDOW = 1

_CODE_RE = re.compile(r"^\d{6}$")


@dataclass
class TwoFactorSetup:
    secret: str
    provisioning_uri: str
    qr_code_url: str
    manual_entry_key: str
    backup_codes: list[str] = field(default_factory=list)


def generate_secret() -> str:
    """Random base32 secret (160 bits)."""
    return pyotp.random_base32()


def format_secret_for_manual_entry(secret: str) -> str:
    """Split a secret into 4-character groups: ``ABCD EFGH ...``."""
    return " ".join(secret[i:i + 4] for i in range(0, len(secret), 4))


def build_provisioning_uri(secret: str, email: str) -> str:
    return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL).provisioning_uri(
        name=email,
        issuer_name=settings.two_factor_issuer,
    )


def render_qr_data_url(uri: str) -> str:
    """Encode a URI as a scannable QR code, returned as an SVG data URL."""
    image = qrcode.make(uri, image_factory=qrcode.image.svg.SvgPathImage)
    encoded = base64.b64encode(image.to_string()).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


def generate_setup(email: str) -> TwoFactorSetup:
    """Fresh, unpersisted setup material for enrolling an authenticator."""
    secret = generate_secret()
    uri = build_provisioning_uri(secret, email)
    return TwoFactorSetup(
        secret=secret,
        provisioning_uri=uri,
        qr_code_url=render_qr_data_url(uri),
        manual_entry_key=format_secret_for_manual_entry(secret),
        backup_codes=generate_backup_codes(settings.backup_code_count),
    )


def verify_code(code: str, secret: str, for_time: datetime | None = None) -> bool:
    """Check a 6-digit code. Malformed codes or secrets return False."""
    if not isinstance(code, str) or not isinstance(secret, str):
        return False

    code = code.replace(" ", "").strip()
    if not _CODE_RE.match(code):
        return False

    # pyotp reads naive datetimes as local time; ours are UTC.
    if for_time is not None and for_time.tzinfo is None:
        for_time = for_time.replace(tzinfo=timezone.utc)

    try:
        totp = pyotp.TOTP(secret.replace(" ", "").upper(), digits=TOTP_DIGITS, interval=TOTP_INTERVAL)
        return totp.verify(code, for_time=for_time, valid_window=TOTP_VALID_WINDOW)
    except (ValueError, TypeError) as e:
        logger.warning(f"TOTP verification error: {e}")
        return False


@lru_cache
def _fernet() -> Fernet:
    if settings.two_factor_encryption_key:
        return Fernet(settings.two_factor_encryption_key.encode("utf-8"))

    derived = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=b"gatekeeper-two-factor-secret",
    ).derive(settings.secret_key.encode("utf-8"))
    return Fernet(base64.urlsafe_b64encode(derived))


def encrypt_secret(secret: str) -> str:
    return _fernet().encrypt(secret.encode("utf-8")).decode("ascii")


def decrypt_secret(ciphertext: str) -> str:
    """Raises ``cryptography.fernet.InvalidToken`` on tampering or a key change."""
    return _fernet().decrypt(ciphertext.encode("ascii")).decode("utf-8")
