"""
Pytest config.

Local imports like `import wiki` rely on the repo root being on sys.path. When invoking a
global `pytest` entrypoint that doesn't happen reliably during collection, so we pin it here.
"""

from __future__ import annotations

import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

import pytest  # noqa: E402

from wiki.auth.config import load_auth_config  # noqa: E402
from wiki.auth.models import PendingLogon, ProviderCallback, ProviderClaims  # noqa: E402
from wiki.auth.oidc import ProviderCancelled, ProviderFailure  # noqa: E402
from wiki.auth.passwords import hash_password  # noqa: E402
from wiki.config import load_app_config  # noqa: E402
from wiki.data.models import WikiPage, WikiTag, WikiTitle, WikiUser  # noqa: E402

TEST_SESSION_SECRET = "test-secret-key-for-testing-purposes-only"

# bcrypt at cost 12 is slow; hash once for the whole session.
_FRANK_HASH: Optional[str] = None


def frank_password_hash() -> str:
    global _FRANK_HASH
    if _FRANK_HASH is None:
        _FRANK_HASH = hash_password("s3cret")
    return _FRANK_HASH


class FakeWikiData:
    """In-memory `WikiData` for tests."""

    def __init__(self) -> None:
        self.users: Dict[int, WikiUser] = {}
        self.pages: Dict[int, WikiPage] = {}
        self.tags: Dict[str, WikiTag] = {}
        self.page_tags: Dict[int, List[str]] = {}
        self.closed = 0
        self._next_id = 1

    def _id(self) -> int:
        n = self._next_id
        self._next_id += 1
        return n

    def get_user_by_user_name(self, user_name: str) -> Optional[WikiUser]:
        return next((u for u in self.users.values() if u.user_name == user_name), None)

    def get_user_by_identifier(self, identifier: str) -> Optional[WikiUser]:
        return next((u for u in self.users.values() if identifier and u.identifier == identifier), None)

    def add_user(self, user: WikiUser) -> WikiUser:
        created = replace(user, id=self._id())
        self.users[created.id] = created
        return created

    def get_all_page_titles(self) -> List[WikiTitle]:
        return [WikiTitle(id=p.id, alias=p.alias, title=p.title) for p in self.pages.values()]

    def get_page(self, page_id: int) -> Optional[WikiPage]:
        page = self.pages.get(page_id)
        return replace(page) if page else None

    def add_page(self, page: WikiPage) -> WikiPage:
        now = datetime.now(timezone.utc)
        created = replace(page, id=self._id(), created_on=now, modified_on=now)
        self.pages[created.id] = created
        return replace(created)

    def update_page(self, page: WikiPage) -> None:
        self.pages[page.id] = replace(page, modified_on=datetime.now(timezone.utc))

    def delete_page(self, page_id: int) -> None:
        self.pages.pop(page_id, None)
        self.page_tags.pop(page_id, None)

    def get_all_tags(self) -> List[WikiTag]:
        return sorted(self.tags.values(), key=lambda t: t.name)

    def add_tag(self, name: str) -> WikiTag:
        if name not in self.tags:
            self.tags[name] = WikiTag(id=self._id(), name=name)
        return self.tags[name]

    def get_page_tags(self, page_id: int) -> List[WikiTag]:
        return sorted((self.tags[n] for n in self.page_tags.get(page_id, [])), key=lambda t: t.name)

    def add_page_tag(self, page_id: int, name: str) -> None:
        names = self.page_tags.setdefault(page_id, [])
        if name in self.tags and name not in names:
            names.append(name)

    def delete_page_tags(self, page_id: int) -> None:
        self.page_tags.pop(page_id, None)

    def close(self) -> None:
        self.closed += 1


class FakeIdentityProvider:
    """Scripted identity provider for the openauth strategy."""

    def __init__(self, *, subject: str = "1122334455", name: str = "Frank") -> None:
        self.subject = subject
        self.name = name
        self.fail_begin: Optional[str] = None
        self.begun: List[str] = []
        self.finalized = 0

    async def begin_login(self, provider_identifier: str, return_url: Optional[str]) -> PendingLogon:
        if self.fail_begin:
            raise ProviderFailure(self.fail_begin)
        self.begun.append(provider_identifier)
        return PendingLogon(
            redirect_uri=f"https://idp.example.com/authorize?login_hint={provider_identifier}",
            return_url=return_url or "https://wiki.example.com/Logon",
            state="state-1",
            nonce="nonce-1",
            code_verifier="verifier-1",
        )

    async def finalize_login(self, pending: PendingLogon, callback: ProviderCallback) -> ProviderClaims:
        self.finalized += 1
        if callback.error == "access_denied":
            raise ProviderCancelled("Logon was cancelled at the identity provider")
        if callback.state != pending.state:
            raise ProviderFailure("Invalid OAuth state")
        return ProviderClaims(claimed_identifier=self.subject, email="frank@example.com", name=self.name)


@pytest.fixture(autouse=True)
def _clear_config_caches():
    load_auth_config.cache_clear()
    load_app_config.cache_clear()
    yield
    load_auth_config.cache_clear()
    load_app_config.cache_clear()


@pytest.fixture()
def wiki_data() -> FakeWikiData:
    data = FakeWikiData()
    data.add_user(WikiUser(id=0, user_name="frank", identifier="1122334455", password_hash=frank_password_hash()))
    return data


@pytest.fixture()
def userpass_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WIKI_AUTH_STRATEGY", "userpass")
    monkeypatch.setenv("AUTH_SESSION_SECRET", TEST_SESSION_SECRET)
    monkeypatch.delenv("AUTH_PUBLIC_BASE_URL", raising=False)
    monkeypatch.delenv("AUTH_COOKIE_SECURE", raising=False)
    monkeypatch.delenv("DB_AUTO_MIGRATE", raising=False)


@pytest.fixture()
def openauth_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WIKI_AUTH_STRATEGY", "openauth")
    monkeypatch.setenv("AUTH_SESSION_SECRET", TEST_SESSION_SECRET)
    monkeypatch.setenv("AUTH_PUBLIC_BASE_URL", "http://wiki.example.com")
    monkeypatch.setenv("OIDC_DISCOVERY_URL", "https://accounts.google.com/.well-known/openid-configuration")
    monkeypatch.setenv("OIDC_CLIENT_ID", "test-client-id")
    monkeypatch.setenv("OIDC_CLIENT_SECRET", "test-client-secret")
    monkeypatch.delenv("AUTH_COOKIE_SECURE", raising=False)
    monkeypatch.delenv("AUTH_ALLOWED_DOMAINS", raising=False)
    monkeypatch.delenv("DB_AUTO_MIGRATE", raising=False)


@pytest.fixture()
def make_provider():
    """Factory for scripted identity providers: `make_provider(subject=..., name=...)`."""
    return FakeIdentityProvider
