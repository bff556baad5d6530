from __future__ import annotations

import asyncio
import logging
from typing import Optional

from wiki.auth.models import AuthRequest, AuthResult, Credentials
from wiki.auth.passwords import verify_password
from wiki.auth.session import USERPASS_KEY, SessionStore
from wiki.data.store import WikiData

logger = logging.getLogger(__name__)

# The password strategy never exposes an identifier to the rest of the app.
HIDDEN_IDENTIFIER = "hidden"


def check_credentials(users: WikiData, credentials: Credentials) -> bool:
    """
    Validate a username/password pair against the users table.

    Args:
        users: Data layer to look the user up in
        credentials: Posted username and password

    Returns:
        True only if the user exists and the password matches its stored hash
    """
    user = users.get_user_by_user_name(credentials.user_name)
    if user is None or user.user_name != credentials.user_name:
        return False
    return verify_password(credentials.password, user.password_hash or "")


class PasswordStrategy:
    """Local username/password logon; the result is cached in the session under `UPAuth`."""

    name = "userpass"

    async def initialize(self, session: Optional[SessionStore], request: AuthRequest) -> AuthResult:
        if session is None:
            return AuthResult()

        already = AuthResult.from_session(session.get(USERPASS_KEY))
        if already is not None:
            return already

        credentials = request.credentials
        if credentials is None or request.users is None:
            return AuthResult()

        # bcrypt and the user lookup both block; keep them off the event loop.
        ok = await asyncio.to_thread(check_credentials, request.users, credentials)
        if not ok:
            logger.info("Password logon rejected for user %s", credentials.user_name)
            return AuthResult()

        result = AuthResult(authenticated=True, identifier=HIDDEN_IDENTIFIER, name=credentials.user_name)
        session.set(USERPASS_KEY, result.to_session())
        logger.info("Password logon accepted for user %s", credentials.user_name)
        return result

    def abandon(self, session: Optional[SessionStore]) -> None:
        if session is None:
            return
        session.set(USERPASS_KEY, None)
