"""
Federated logon as a three-step handshake kept in the visitor session.

    Fresh  --(provider identifier posted)-->  Step1 (OpenAuthStep1: pending redirect)
    Step1  --(provider callback)----------->  Step2 (OpenAuthStep2: final result)
    any    --(abandon)--------------------->  Abandoned (OpenAuthAbandon flag)

Step2 is the resting state: every later request copies its result forward.
The abandon flag makes the next pass return unauthenticated and clears itself,
so stale step state cannot bring the logon back in the same cycle as a logoff.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from wiki.auth.models import AuthRequest, AuthResult, PendingLogon, ProviderCallback, ProviderClaims
from wiki.auth.oidc import ProviderCancelled, ProviderFailure
from wiki.auth.session import (
    OPENAUTH_ABANDON_KEY,
    OPENAUTH_STEP1_KEY,
    OPENAUTH_STEP2_KEY,
    SessionStore,
)

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    async def begin_login(self, provider_identifier: str, return_url: Optional[str]) -> PendingLogon: ...

    async def finalize_login(self, pending: PendingLogon, callback: ProviderCallback) -> ProviderClaims: ...


class FederatedStrategy:
    name = "openauth"

    def __init__(self, provider: IdentityProvider) -> None:
        self._provider = provider

    async def initialize(self, session: Optional[SessionStore], request: AuthRequest) -> AuthResult:
        if session is None:
            return AuthResult()

        if session.get(OPENAUTH_ABANDON_KEY) is not None:
            session.set(OPENAUTH_ABANDON_KEY, None)
            return AuthResult()

        finished = AuthResult.from_session(session.get(OPENAUTH_STEP2_KEY))
        if finished is not None:
            return finished

        pending = PendingLogon.from_session(session.get(OPENAUTH_STEP1_KEY))
        if pending is None:
            return await self._begin(session, request)
        return await self._finalize(session, request, pending)

    async def _begin(self, session: SessionStore, request: AuthRequest) -> AuthResult:
        logon = request.logon
        if logon is None or not logon.identifier:
            return AuthResult()

        try:
            pending = await self._provider.begin_login(logon.identifier, request.return_url)
        except ProviderFailure as e:
            return AuthResult(error_message=str(e))

        session.set(OPENAUTH_STEP1_KEY, pending.to_session())
        return AuthResult(redirect_url=pending.redirect_uri)

    async def _finalize(self, session: SessionStore, request: AuthRequest, pending: PendingLogon) -> AuthResult:
        if request.callback is None:
            # Still waiting for the provider to send the visitor back.
            return AuthResult()

        try:
            claims = await self._provider.finalize_login(pending, request.callback)
            result = AuthResult(
                authenticated=True,
                identifier=claims.claimed_identifier,
                name=claims.name,
                claims=claims.as_dict(),
            )
            logger.info("OpenID logon accepted for %s", claims.claimed_identifier)
        except ProviderCancelled as e:
            result = AuthResult(error_message=str(e))
            logger.info("OpenID logon cancelled")
        except ProviderFailure as e:
            result = AuthResult(error_message=str(e))
            logger.info("OpenID logon failed: %s", str(e))

        session.set(OPENAUTH_STEP2_KEY, result.to_session())
        return result

    def abandon(self, session: Optional[SessionStore]) -> None:
        if session is None:
            return
        session.set(OPENAUTH_STEP1_KEY, None)
        session.set(OPENAUTH_STEP2_KEY, None)
        session.set(OPENAUTH_ABANDON_KEY, True)
