from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Protocol

from itsdangerous import BadSignature, BadTimeSignature, URLSafeTimedSerializer

from wiki.auth.config import AuthConfig

logger = logging.getLogger(__name__)

# Session keys owned by the authentication strategies.
USERPASS_KEY = "UPAuth"
OPENAUTH_STEP1_KEY = "OpenAuthStep1"
OPENAUTH_STEP2_KEY = "OpenAuthStep2"
OPENAUTH_ABANDON_KEY = "OpenAuthAbandon"

# Logged-on wiki user (set by /Logon, cleared by /Logoff).
CURRENT_USER_KEY = "CurrentUser"

SESSION_SALT = "miranda-wiki-session-v1"


class SessionStore(Protocol):
    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...


class CookieSession:
    """
    Per-visitor key/value store carried in a signed cookie.

    Values must be JSON-serializable. Setting a key to None removes it.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = dict(data or {})
        self.modified = False

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        if value is None:
            if key in self._data:
                del self._data[key]
                self.modified = True
            return
        self._data[key] = value
        self.modified = True

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


def session_cookie_name(cfg: AuthConfig) -> str:
    # `__Host-` requires Secure + Path=/ + no Domain; browsers may reject it on HTTP.
    return "__Host-miranda_session" if cfg.cookie_secure else "miranda_session"


def _serializer(cfg: AuthConfig) -> Optional[URLSafeTimedSerializer]:
    if not cfg.session_secret:
        return None
    return URLSafeTimedSerializer(secret_key=cfg.session_secret, salt=SESSION_SALT)


def encode_session(cfg: AuthConfig, session: CookieSession) -> Optional[str]:
    s = _serializer(cfg)
    if s is None:
        return None
    raw = json.dumps(session.as_dict(), separators=(",", ":"), sort_keys=True)
    return s.dumps(raw)


def decode_session(cfg: AuthConfig, value: str | None) -> CookieSession:
    """Decode a session cookie; missing, expired or tampered cookies yield an empty session."""
    if not value:
        return CookieSession()
    s = _serializer(cfg)
    if s is None:
        return CookieSession()
    try:
        raw = s.loads(value, max_age=cfg.session_ttl_seconds)
        data = json.loads(raw)
    except (BadSignature, BadTimeSignature, ValueError):
        logger.debug("Discarding invalid session cookie")
        return CookieSession()
    if not isinstance(data, dict):
        return CookieSession()
    return CookieSession(data)


def clear_session_cookie_kwargs(cfg: AuthConfig) -> dict:
    return {
        "key": session_cookie_name(cfg),
        "value": "",
        "max_age": 0,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


def session_cookie_kwargs(cfg: AuthConfig, value: str) -> dict:
    return {
        "key": session_cookie_name(cfg),
        "value": value,
        "max_age": cfg.session_ttl_seconds,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }
