from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

STRATEGY_USERPASS = "userpass"
STRATEGY_OPENAUTH = "openauth"
STRATEGIES = (STRATEGY_USERPASS, STRATEGY_OPENAUTH)


@dataclass(frozen=True)
class AuthConfig:
    # Which logon strategy this deployment uses (userpass|openauth)
    strategy: str

    # OIDC Configuration (openauth strategy only)
    oidc_discovery_url: Optional[str]
    oidc_client_id: Optional[str]
    oidc_client_secret: Optional[str]
    oidc_provider_name: Optional[str]  # Display name (default: auto-detected)
    oidc_provider_logo: Optional[str]  # Logo URL (default: auto-detected)

    # Session configuration
    public_base_url: Optional[str]  # Required for OIDC redirect
    session_secret: Optional[str]  # Required for session signing
    session_ttl_seconds: int
    cookie_secure: bool

    # OIDC domain enforcement (optional, for restricting logons to specific email domains)
    allowed_domains: List[str]

    @property
    def oidc_enabled(self) -> bool:
        """OIDC is usable if the strategy is selected and discovery URL and credentials are configured."""
        return bool(
            self.strategy == STRATEGY_OPENAUTH
            and self.oidc_discovery_url
            and self.oidc_client_id
            and self.oidc_client_secret
        )

    @property
    def logon_url(self) -> Optional[str]:
        """Absolute URL the identity provider sends the visitor back to."""
        base = (self.public_base_url or "").strip().rstrip("/")
        if not base:
            return None
        return f"{base}/Logon"


def _parse_csv(value: str) -> List[str]:
    items = [x.strip().lower() for x in (value or "").split(",")]
    return [x for x in items if x]


def _parse_strategy(value: str) -> str:
    strategy = (value or "").strip().lower() or STRATEGY_USERPASS
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown WIKI_AUTH_STRATEGY {strategy!r} (expected one of: {', '.join(STRATEGIES)})")
    return strategy


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load authentication configuration from environment variables.

    WIKI_AUTH_STRATEGY picks the logon strategy for the whole deployment.
    The openauth strategy additionally needs OIDC_DISCOVERY_URL, OIDC_CLIENT_ID,
    OIDC_CLIENT_SECRET and AUTH_PUBLIC_BASE_URL.
    """
    public_base_url = (os.getenv("AUTH_PUBLIC_BASE_URL", "") or "").strip() or None
    cookie_secure_env = (os.getenv("AUTH_COOKIE_SECURE", "") or "").strip().lower()
    if cookie_secure_env in ("1", "true", "yes", "on"):
        cookie_secure = True
    elif cookie_secure_env in ("0", "false", "no", "off"):
        cookie_secure = False
    else:
        # Default: secure cookies when base URL is https; otherwise allow local dev.
        cookie_secure = True if (public_base_url or "").startswith("https://") else False

    ttl = int(float((os.getenv("AUTH_SESSION_TTL_SECONDS", "") or "43200").strip() or "43200"))  # 12h default
    if ttl <= 60:
        ttl = 60

    return AuthConfig(
        strategy=_parse_strategy(os.getenv("WIKI_AUTH_STRATEGY", "")),
        # OIDC configuration
        oidc_discovery_url=(os.getenv("OIDC_DISCOVERY_URL", "") or "").strip() or None,
        oidc_client_id=(os.getenv("OIDC_CLIENT_ID", "") or "").strip() or None,
        oidc_client_secret=(os.getenv("OIDC_CLIENT_SECRET", "") or "").strip() or None,
        oidc_provider_name=(os.getenv("OIDC_PROVIDER_NAME", "") or "").strip() or None,
        oidc_provider_logo=(os.getenv("OIDC_PROVIDER_LOGO", "") or "").strip() or None,
        # Session configuration
        public_base_url=public_base_url,
        session_secret=(os.getenv("AUTH_SESSION_SECRET", "") or "").strip() or None,
        session_ttl_seconds=ttl,
        cookie_secure=cookie_secure,
        allowed_domains=_parse_csv(os.getenv("AUTH_ALLOWED_DOMAINS", "")),
    )
