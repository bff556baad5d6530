from __future__ import annotations

import logging
from typing import Optional, Protocol

from wiki.auth.config import STRATEGY_OPENAUTH, STRATEGY_USERPASS, AuthConfig
from wiki.auth.models import AuthRequest, AuthResult
from wiki.auth.session import SessionStore

logger = logging.getLogger(__name__)


class AuthStrategy(Protocol):
    name: str

    async def initialize(self, session: Optional[SessionStore], request: AuthRequest) -> AuthResult: ...

    def abandon(self, session: Optional[SessionStore]) -> None: ...


def build_strategy(cfg: AuthConfig) -> AuthStrategy:
    """
    Pick the deployment's one logon strategy.

    Called once at startup; requests never switch strategies.
    """
    if cfg.strategy == STRATEGY_USERPASS:
        from wiki.auth.userpass import PasswordStrategy

        return PasswordStrategy()
    if cfg.strategy == STRATEGY_OPENAUTH:
        from wiki.auth.oidc import OidcProvider
        from wiki.auth.openauth import FederatedStrategy

        if not cfg.oidc_enabled:
            logger.warning("openauth strategy selected but OIDC is not fully configured; logons will fail")
        return FederatedStrategy(OidcProvider(cfg))
    raise ValueError(f"Unknown authentication strategy: {cfg.strategy}")


class Authentication:
    """
    Strategy-independent view of the visitor's authentication state.

    Callers see `authenticated`, `identifier` and `name` whichever strategy is active.
    """

    def __init__(self, strategy: AuthStrategy, session: Optional[SessionStore]) -> None:
        self._strategy = strategy
        self._session = session
        self.result = AuthResult()

    @property
    def strategy_name(self) -> str:
        return self._strategy.name

    @property
    def authenticated(self) -> bool:
        return self.result.authenticated

    @property
    def identifier(self) -> Optional[str]:
        return self.result.identifier

    @property
    def name(self) -> Optional[str]:
        return self.result.name

    @property
    def error_message(self) -> Optional[str]:
        return self.result.error_message

    @property
    def redirect_url(self) -> Optional[str]:
        return self.result.redirect_url

    async def initialize(self, request: Optional[AuthRequest] = None) -> AuthResult:
        self.result = await self._strategy.initialize(self._session, request or AuthRequest())
        return self.result

    def abandon(self) -> None:
        self._strategy.abandon(self._session)
        self.result = AuthResult()
