from __future__ import annotations

import asyncio

import pytest

from wiki.auth.config import load_auth_config
from wiki.auth.facade import Authentication, build_strategy
from wiki.auth.models import AuthRequest, Credentials, OpenAuthLogon, ProviderCallback
from wiki.auth.openauth import FederatedStrategy
from wiki.auth.session import CookieSession
from wiki.auth.userpass import PasswordStrategy


def test_build_strategy_userpass(userpass_env) -> None:
    strategy = build_strategy(load_auth_config())
    assert isinstance(strategy, PasswordStrategy)
    assert strategy.name == "userpass"


def test_build_strategy_openauth(openauth_env) -> None:
    strategy = build_strategy(load_auth_config())
    assert isinstance(strategy, FederatedStrategy)
    assert strategy.name == "openauth"


def test_strategy_defaults_to_userpass(monkeypatch) -> None:
    monkeypatch.delenv("WIKI_AUTH_STRATEGY", raising=False)
    assert load_auth_config().strategy == "userpass"


def test_unknown_strategy_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("WIKI_AUTH_STRATEGY", "kerberos")
    with pytest.raises(ValueError):
        load_auth_config()


def test_facade_exposes_password_result(wiki_data) -> None:
    auth = Authentication(PasswordStrategy(), CookieSession())
    assert auth.authenticated is False

    asyncio.run(auth.initialize(AuthRequest(credentials=Credentials("frank", "s3cret"), users=wiki_data)))

    assert auth.strategy_name == "userpass"
    assert auth.authenticated is True
    assert auth.identifier == "hidden"
    assert auth.name == "frank"


def test_facade_exposes_federated_result(make_provider) -> None:
    session = CookieSession()
    strategy = FederatedStrategy(make_provider(subject="abc", name="Frank"))

    auth = Authentication(strategy, session)
    asyncio.run(auth.initialize(AuthRequest(logon=OpenAuthLogon("frank@example.com"))))
    assert auth.redirect_url is not None
    assert auth.authenticated is False

    # Next request, new facade over the same session.
    auth = Authentication(strategy, session)
    asyncio.run(auth.initialize(AuthRequest(callback=ProviderCallback(code="c", state="state-1"))))
    assert auth.authenticated is True
    assert auth.identifier == "abc"
    assert auth.name == "Frank"


def test_abandon_resets_facade_and_session(wiki_data) -> None:
    session = CookieSession()
    auth = Authentication(PasswordStrategy(), session)
    asyncio.run(auth.initialize(AuthRequest(credentials=Credentials("frank", "s3cret"), users=wiki_data)))

    auth.abandon()

    assert auth.authenticated is False
    asyncio.run(auth.initialize())
    assert auth.authenticated is False
