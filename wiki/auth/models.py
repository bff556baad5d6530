from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from wiki.data.store import WikiData


@dataclass
class AuthResult:
    """Outcome of one authentication pass (either strategy)."""

    authenticated: bool = False
    identifier: Optional[str] = None
    name: Optional[str] = None
    error_message: Optional[str] = None
    redirect_url: Optional[str] = None  # openauth step 1: send the visitor here
    claims: Dict[str, Any] = field(default_factory=dict)

    def to_session(self) -> Dict[str, Any]:
        # Plain JSON-able record; the redirect is a one-shot instruction, never persisted.
        data = asdict(self)
        data.pop("redirect_url", None)
        return data

    @classmethod
    def from_session(cls, value: Any) -> Optional["AuthResult"]:
        if not isinstance(value, dict):
            return None
        claims = value.get("claims")
        identifier = value.get("identifier")
        name = value.get("name")
        error_message = value.get("error_message")
        return cls(
            authenticated=value.get("authenticated") is True,
            identifier=str(identifier) if identifier else None,
            name=str(name) if name else None,
            error_message=str(error_message) if error_message else None,
            claims=dict(claims) if isinstance(claims, dict) else {},
        )


@dataclass(frozen=True)
class Credentials:
    """Username/password posted to /Logon."""

    user_name: str
    password: str


@dataclass(frozen=True)
class OpenAuthLogon:
    """Provider identifier posted to /Logon (sent to the provider as a login hint)."""

    identifier: str


@dataclass(frozen=True)
class ProviderCallback:
    """Query parameters the identity provider appends when it returns to /Logon."""

    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


@dataclass(frozen=True)
class PendingLogon:
    """What openauth step 1 must remember until the provider calls back."""

    redirect_uri: str
    return_url: str
    state: str
    nonce: str
    code_verifier: str

    def to_session(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_session(cls, value: Any) -> Optional["PendingLogon"]:
        if not isinstance(value, dict):
            return None
        try:
            return cls(
                redirect_uri=str(value["redirect_uri"]),
                return_url=str(value["return_url"]),
                state=str(value["state"]),
                nonce=str(value["nonce"]),
                code_verifier=str(value["code_verifier"]),
            )
        except KeyError:
            return None


@dataclass(frozen=True)
class ProviderClaims:
    """Identity returned by the provider after a successful logon."""

    claimed_identifier: str
    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class AuthRequest:
    """
    Explicit inputs for one authentication pass.

    Each route decides which payload it passes; strategies never scan the request for it.
    """

    credentials: Optional[Credentials] = None
    logon: Optional[OpenAuthLogon] = None
    callback: Optional[ProviderCallback] = None
    return_url: Optional[str] = None
    users: Optional["WikiData"] = None


@dataclass(frozen=True)
class CurrentUser:
    """The logged-on wiki user kept in the session after a successful /Logon."""

    id: int
    user_name: str
    roles: List[str] = field(default_factory=list)

    def to_session(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_session(cls, value: Any) -> Optional["CurrentUser"]:
        if not isinstance(value, dict):
            return None
        user_name = str(value.get("user_name") or "").strip()
        if not user_name:
            return None
        try:
            user_id = int(value.get("id"))
        except (TypeError, ValueError):
            return None
        roles = value.get("roles")
        return cls(id=user_id, user_name=user_name, roles=[str(r) for r in roles] if isinstance(roles, list) else [])

    def in_role(self, *roles: str) -> bool:
        return any(r in self.roles for r in roles)
