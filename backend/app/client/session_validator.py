"""Client-side session polling.

There is no push channel for revocation: a signed-in client asks
``/api/auth/validate-session`` every 15-30 seconds and whenever it regains
focus. Only an explicit ``valid: false`` answer signs the client out; a failed
request means "unknown" and is retried on the next tick.

Polling is suspended on the unauthenticated flows (login, register, 2FA
challenge, password reset, email verification) and while the email address is
unverified, so onboarding can't loop into a forced logout.
"""
from dataclasses import dataclass, field
import enum
import logging
import threading
from typing import Any, Callable, Mapping

import requests

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 15
MIN_INTERVAL_SECONDS = 15
MAX_INTERVAL_SECONDS = 30
REVOKED_NOTICE = "You have been signed out from another device"
LOGIN_REDIRECT = "/auth/login?message=session-revoked"
UNAUTHENTICATED_PATHS = (
    "/auth/login",
    "/auth/register",
    "/auth/2fa",
    "/auth/forgot-password",
    "/auth/verify-email",
)


class ValidatorState(str, enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    SUSPENDED = "suspended"
    SIGNED_OUT = "signed-out"


def is_unauthenticated_flow(path: str) -> bool:
    return any(path == prefix or path.startswith(prefix + "/") for prefix in UNAUTHENTICATED_PATHS)


def expired_cookie_headers(hostname: str, cookie_names: tuple[str, ...]) -> list[str]:
    """Set-Cookie values that expire each cookie for host-only, bare and dot-prefixed domains."""
    expired = "expires=Thu, 01 Jan 1970 00:00:00 GMT; path=/"
    headers = []
    for domain in (None, hostname, f".{hostname}"):
        for name in cookie_names:
            suffix = f"; domain={domain}" if domain else ""
            headers.append(f"{name}=; {expired}{suffix}")
    return headers


@dataclass
class LocalSessionState:
    """Session material the client holds: cookies by name, plus its host."""

    hostname: str
    cookies: dict[str, str] = field(default_factory=dict)
    cookie_names: tuple[str, ...] = ("gatekeeper_session", "gatekeeper_csrf")

    def clear(self) -> list[str]:
        for name in self.cookie_names:
            self.cookies.pop(name, None)
        return expired_cookie_headers(self.hostname, self.cookie_names)


class HttpStatusFetcher:
    """Calls the validation endpoint with the client's cookies."""

    def __init__(self, base_url: str, http: requests.Session | None = None, timeout: float = 5.0):
        self._url = f"{base_url.rstrip('/')}/api/auth/validate-session"
        self._http = http or requests.Session()
        self._timeout = timeout

    def __call__(self) -> Mapping[str, Any]:
        response = self._http.get(
            self._url,
            headers={"Cache-Control": "no-cache, no-store, must-revalidate", "Pragma": "no-cache"},
            timeout=self._timeout,
        )
        return response.json()


class SessionValidator:
    """Explicit polling state with a start/stop lifecycle.

    ``fetch_status`` returns the decoded validation payload and may raise on
    transport errors. ``sign_out``, ``redirect`` and ``notify`` are the
    client's hooks for ending the local session, navigating and showing the
    one-time notice.
    """

    def __init__(
        self,
        fetch_status: Callable[[], Mapping[str, Any]],
        local_state: LocalSessionState,
        sign_out: Callable[[], None],
        redirect: Callable[[str], None],
        notify: Callable[[str], None],
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ):
        if not MIN_INTERVAL_SECONDS <= interval_seconds <= MAX_INTERVAL_SECONDS:
            raise ValueError(f"interval must be between {MIN_INTERVAL_SECONDS} and {MAX_INTERVAL_SECONDS} seconds")
        self._fetch_status = fetch_status
        self.local_state = local_state
        self._sign_out = sign_out
        self._redirect = redirect
        self._notify = notify
        self.interval_seconds = interval_seconds

        self._state = ValidatorState.IDLE
        self._notice_shown = False
        self._in_flight = threading.Lock()
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None

    @property
    def state(self) -> ValidatorState:
        return self._state

    @property
    def notice_shown(self) -> bool:
        return self._notice_shown

    def update_auth(self, authenticated: bool, path: str, email_verified: bool) -> None:
        """Start or stop polling to match the client's auth status and page."""
        if not authenticated:
            self.stop(ValidatorState.IDLE)
        elif not email_verified or is_unauthenticated_flow(path):
            self.stop(ValidatorState.SUSPENDED)
        else:
            self.start()

    def start(self, background: bool = True) -> None:
        if self._state == ValidatorState.POLLING:
            return
        self._state = ValidatorState.POLLING
        if not background:
            return

        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            args=(self._stop_event,),
            name="session-validator",
            daemon=True,
        )
        self._thread.start()

    def stop(self, state: ValidatorState = ValidatorState.IDLE) -> None:
        self._state = state
        if self._stop_event is not None:
            self._stop_event.set()
        thread = self._thread
        self._stop_event = None
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.interval_seconds)

    def on_focus(self) -> bool | None:
        return self.validate_now()

    def on_visibility_change(self, hidden: bool) -> bool | None:
        if hidden:
            return None
        return self.validate_now()

    def validate_now(self) -> bool | None:
        """One check. True/False for a definite answer, None when skipped or unknown."""
        if self._state != ValidatorState.POLLING:
            return None
        if not self._in_flight.acquire(blocking=False):
            return None
        try:
            try:
                result = self._fetch_status()
            except Exception as e:
                logger.warning(f"Session validation failed, will retry: {e}")
                return None

            if result.get("valid") is False:
                self._handle_revoked(result.get("reason"))
                return False
            if result.get("valid") is True:
                return True
            return None
        finally:
            self._in_flight.release()

    def _handle_revoked(self, reason: str | None) -> None:
        logger.info(f"Session invalid, signing out: {reason}")
        if not self._notice_shown:
            self._notice_shown = True
            self._notify(REVOKED_NOTICE)
        self.local_state.clear()
        self.stop(ValidatorState.SIGNED_OUT)
        self._sign_out()
        self._redirect(LOGIN_REDIRECT)

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self.validate_now()
            if stop_event.wait(self.interval_seconds):
                break
