from __future__ import annotations

import asyncio

from wiki.auth.models import AuthRequest, Credentials
from wiki.auth.session import USERPASS_KEY, CookieSession
from wiki.auth.userpass import HIDDEN_IDENTIFIER, PasswordStrategy, check_credentials


def _run(coro):
    return asyncio.run(coro)


def test_valid_credentials_authenticate_and_cache_result(wiki_data) -> None:
    session = CookieSession()
    strategy = PasswordStrategy()

    result = _run(
        strategy.initialize(session, AuthRequest(credentials=Credentials("frank", "s3cret"), users=wiki_data))
    )

    assert result.authenticated is True
    assert result.identifier == HIDDEN_IDENTIFIER
    assert result.name == "frank"
    assert session.get(USERPASS_KEY)["authenticated"] is True


def test_cached_result_is_reused_without_credentials(wiki_data) -> None:
    session = CookieSession()
    strategy = PasswordStrategy()
    _run(strategy.initialize(session, AuthRequest(credentials=Credentials("frank", "s3cret"), users=wiki_data)))

    # Later request: no credentials, no data layer.
    result = _run(strategy.initialize(session, AuthRequest()))

    assert result.authenticated is True
    assert result.name == "frank"


def test_wrong_password_is_rejected(wiki_data) -> None:
    session = CookieSession()
    result = _run(
        PasswordStrategy().initialize(session, AuthRequest(credentials=Credentials("frank", "nope"), users=wiki_data))
    )

    assert result.authenticated is False
    assert USERPASS_KEY not in session


def test_unknown_user_is_rejected(wiki_data) -> None:
    assert check_credentials(wiki_data, Credentials("nobody", "s3cret")) is False


def test_no_credentials_is_a_noop_pass(wiki_data) -> None:
    session = CookieSession()
    result = _run(PasswordStrategy().initialize(session, AuthRequest(users=wiki_data)))

    assert result.authenticated is False
    assert session.modified is False


def test_no_session_is_unauthenticated(wiki_data) -> None:
    result = _run(
        PasswordStrategy().initialize(None, AuthRequest(credentials=Credentials("frank", "s3cret"), users=wiki_data))
    )
    assert result.authenticated is False


def test_abandon_then_initialize_is_unauthenticated(wiki_data) -> None:
    session = CookieSession()
    strategy = PasswordStrategy()
    _run(strategy.initialize(session, AuthRequest(credentials=Credentials("frank", "s3cret"), users=wiki_data)))

    strategy.abandon(session)
    result = _run(strategy.initialize(session, AuthRequest()))

    assert result.authenticated is False
    assert USERPASS_KEY not in session
