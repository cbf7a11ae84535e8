"""
Authentication for Dream Analyzer.

Sign-up, sign-in and token refresh go to the hosted auth provider (Supabase
GoTrue). The current identity for a request is tracked by a SessionObserver,
which notifies subscribers when a user signs in, signs out or has their token
refreshed.
"""

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

import requests

import config

log = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"

# Refresh a little before the provider's expiry time
EXPIRY_LEEWAY_SECONDS = 30


class AuthError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class AuthSession:
    user_id: str
    email: str
    access_token: str
    refresh_token: str
    expires_at: float

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now >= self.expires_at - EXPIRY_LEEWAY_SECONDS

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["AuthSession"]:
        """Rebuild a session from cookie data; None if the data is unusable."""
        if not data:
            return None
        try:
            return cls(
                user_id=data["user_id"],
                email=data.get("email", ""),
                access_token=data["access_token"],
                refresh_token=data["refresh_token"],
                expires_at=float(data["expires_at"]),
            )
        except (KeyError, TypeError, ValueError):
            return None


# ----------------------------------------------------
# Session Observer
# ----------------------------------------------------

SessionCallback = Callable[[str, Optional[AuthSession]], None]


class Subscription:
    """Handle returned by SessionObserver.subscribe."""

    def __init__(self, observer: "SessionObserver", callback: SessionCallback):
        self._observer = observer
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._observer._remove(self)
            self.active = False

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()


class SessionObserver:
    """
    Holds the current identity and tells subscribers when it changes.

    Events are delivered synchronously, in subscription order, with the
    event name and the session after the change (None after sign-out).
    """

    def __init__(self, current: Optional[AuthSession] = None):
        self._current = current
        self._subscriptions: List[Subscription] = []

    @property
    def current(self) -> Optional[AuthSession]:
        return self._current

    @property
    def is_signed_in(self) -> bool:
        return self._current is not None

    def subscribe(self, callback: SessionCallback) -> Subscription:
        subscription = Subscription(self, callback)
        self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _emit(self, event: str) -> None:
        for subscription in list(self._subscriptions):
            subscription.callback(event, self._current)

    def sign_in(self, session: AuthSession) -> None:
        self._current = session
        self._emit(SIGNED_IN)

    def refresh(self, session: AuthSession) -> None:
        self._current = session
        self._emit(TOKEN_REFRESHED)

    def sign_out(self) -> None:
        if self._current is None:
            return
        self._current = None
        self._emit(SIGNED_OUT)


# ----------------------------------------------------
# Hosted auth provider
# ----------------------------------------------------

def supabase_headers(access_token: Optional[str] = None) -> Dict[str, str]:
    """Headers for hosted store calls, scoped to a user when a token is given."""
    return {
        "apikey": config.SUPABASE_ANON_KEY,
        "Authorization": f"Bearer {access_token or config.SUPABASE_ANON_KEY}",
        "Content-Type": "application/json",
    }


def _auth_url(path: str) -> str:
    return f"{config.SUPABASE_URL}/auth/v1/{path}"


def _error_message(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200] or f"HTTP {resp.status_code}"
    return (
        data.get("error_description")
        or data.get("msg")
        or data.get("message")
        or data.get("error")
        or f"HTTP {resp.status_code}"
    )


def _post(path: str, body: Dict[str, Any], access_token: Optional[str] = None) -> requests.Response:
    try:
        resp = requests.post(
            _auth_url(path),
            headers=supabase_headers(access_token),
            json=body,
            timeout=config.SUPABASE_TIMEOUT,
        )
    except requests.RequestException as exc:
        raise AuthError(f"Auth provider unreachable: {exc}") from exc

    if resp.status_code >= 400:
        raise AuthError(_error_message(resp), status_code=resp.status_code)
    return resp


def _session_from_payload(data: Dict[str, Any]) -> AuthSession:
    user = data.get("user") or {}
    expires_at = data.get("expires_at")
    if expires_at is None:
        expires_at = time.time() + float(data.get("expires_in", 3600))
    return AuthSession(
        user_id=user.get("id", ""),
        email=user.get("email", ""),
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token", ""),
        expires_at=float(expires_at),
    )


def sign_up(email: str, password: str) -> Optional[AuthSession]:
    """
    Register a new account.

    Returns a session when the provider signs the user in immediately, or
    None when the account must be confirmed by email first.
    """
    data = _post("signup", {"email": email, "password": password}).json()
    if not data.get("access_token"):
        log.info("Sign-up for %s awaiting email confirmation", email)
        return None
    return _session_from_payload(data)


def sign_in_with_password(email: str, password: str) -> AuthSession:
    data = _post("token?grant_type=password", {"email": email, "password": password}).json()
    return _session_from_payload(data)


def refresh_session(refresh_token: str) -> AuthSession:
    data = _post("token?grant_type=refresh_token", {"refresh_token": refresh_token}).json()
    return _session_from_payload(data)


def sign_out_remote(session: AuthSession) -> None:
    """Revoke the session's refresh token with the provider."""
    _post("logout", {}, access_token=session.access_token)
