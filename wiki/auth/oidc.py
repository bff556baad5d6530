"""
OpenID Connect client used by the openauth strategy.

Authorization-code flow with PKCE. The discovery document and JWKS are cached
for an hour per URL. Blocking HTTP calls are pushed to a worker thread by the
async entrypoints (`OidcProvider.begin_login` / `OidcProvider.finalize_login`).
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode, urlparse

import jwt  # PyJWT
import requests

from wiki.auth.config import AuthConfig
from wiki.auth.models import PendingLogon, ProviderCallback, ProviderClaims
from wiki.auth.util import pkce_challenge, random_token

logger = logging.getLogger(__name__)

# url -> (fetched_at, document); discovery documents and JWKS rarely change.
_documents: Dict[str, Tuple[float, Dict[str, Any]]] = {}
DOCUMENT_TTL_SECONDS = 3600


class ProviderFailure(Exception):
    """The identity provider round-trip failed."""


class ProviderCancelled(ProviderFailure):
    """The visitor cancelled (or denied) the logon at the identity provider."""


def _fetch_json(url: str, what: str) -> Dict[str, Any]:
    now = time.time()
    hit = _documents.get(url)
    if hit is not None and now - hit[0] < DOCUMENT_TTL_SECONDS:
        return hit[1]
    r = requests.get(url, timeout=10)
    r.raise_for_status()
    data = r.json()
    if not isinstance(data, dict):
        raise ValueError(f"Invalid {what}")
    _documents[url] = (now, data)
    return data


def _get_discovery(discovery_url: str) -> Dict[str, Any]:
    return _fetch_json(discovery_url, "OIDC discovery document")


def _get_jwks(jwks_uri: str) -> Dict[str, Any]:
    return _fetch_json(jwks_uri, "JWKS")


def _require_client(cfg: AuthConfig) -> str:
    if not cfg.oidc_discovery_url:
        raise ValueError("OIDC discovery URL not configured")
    if not cfg.oidc_client_id:
        raise ValueError("OIDC client ID not configured")
    return cfg.oidc_discovery_url


def get_provider_metadata(cfg: AuthConfig) -> Dict[str, str]:
    """
    Get provider display metadata (name, logo) for the logon view.
    Returns auto-detected values or configured overrides.
    """
    if not cfg.oidc_discovery_url:
        raise ValueError("OIDC discovery URL not configured")

    disc = _get_discovery(cfg.oidc_discovery_url)
    issuer = str(disc.get("issuer") or "").lower()

    provider_name = cfg.oidc_provider_name
    if not provider_name:
        if "google" in issuer:
            provider_name = "Google"
        elif "okta" in issuer:
            provider_name = "Okta"
        elif "azure" in issuer or "microsoft" in issuer:
            provider_name = "Microsoft"
        elif "auth0" in issuer:
            provider_name = "Auth0"
        else:
            parsed = urlparse(issuer)
            provider_name = parsed.netloc.split(".")[0].title() if parsed.netloc else "SSO Provider"

    provider_logo = cfg.oidc_provider_logo
    if not provider_logo:
        discovery_url = cfg.oidc_discovery_url.lower()
        if "google" in discovery_url:
            provider_logo = "https://www.google.com/favicon.ico"
        elif "microsoft" in discovery_url or "azure" in discovery_url:
            provider_logo = "https://www.microsoft.com/favicon.ico"
        else:
            provider_logo = ""

    return {
        "name": provider_name,
        "logo": provider_logo,
    }


def build_authorize_url(
    cfg: AuthConfig,
    *,
    redirect_uri: str,
    state: str,
    nonce: str,
    code_challenge: str,
    login_hint: Optional[str] = None,
) -> str:
    """
    Build authorization URL for the OIDC provider (PKCE, S256).
    """
    disc = _get_discovery(_require_client(cfg))
    auth_endpoint = str(disc.get("authorization_endpoint") or "")
    if not auth_endpoint:
        raise ValueError("OIDC discovery missing authorization_endpoint")

    params = {
        "client_id": cfg.oidc_client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": "openid email profile",
        "state": state,
        "nonce": nonce,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    if login_hint:
        params["login_hint"] = login_hint
    # Google-specific hosted domain hint; harmless elsewhere.
    if len(cfg.allowed_domains) == 1:
        params["hd"] = cfg.allowed_domains[0]

    return f"{auth_endpoint}?{urlencode(params)}"


def exchange_code_for_tokens(
    cfg: AuthConfig,
    *,
    redirect_uri: str,
    code: str,
    code_verifier: str,
) -> Dict[str, Any]:
    """
    Exchange authorization code for tokens (id_token, access_token).
    """
    disc = _get_discovery(_require_client(cfg))
    if not cfg.oidc_client_secret:
        raise ValueError("OIDC client secret not configured")
    token_endpoint = str(disc.get("token_endpoint") or "")
    if not token_endpoint:
        raise ValueError("OIDC discovery missing token_endpoint")

    payload = {
        "client_id": cfg.oidc_client_id,
        "client_secret": cfg.oidc_client_secret,
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "code_verifier": code_verifier,
    }
    r = requests.post(token_endpoint, data=payload, timeout=10)
    if r.status_code >= 400:
        # Avoid leaking sensitive info; include minimal context.
        raise ValueError(f"Token exchange failed (status={r.status_code})")
    data = r.json()
    if not isinstance(data, dict):
        raise ValueError("Invalid token response")
    return data


def validate_id_token(
    cfg: AuthConfig,
    *,
    id_token: str,
    expected_nonce: str,
) -> Dict[str, Any]:
    """
    Validate ID token from OIDC provider.
    - Verifies JWT signature using provider's public keys
    - Validates issuer, audience, nonce
    - Checks email verification status
    """
    disc = _get_discovery(_require_client(cfg))
    issuer = str(disc.get("issuer") or "")
    jwks_uri = str(disc.get("jwks_uri") or "")
    if not issuer or not jwks_uri:
        raise ValueError("OIDC discovery missing issuer/jwks_uri")

    hdr = jwt.get_unverified_header(id_token)
    kid = str(hdr.get("kid") or "")
    if not kid:
        raise ValueError("ID token missing kid")

    keys = _get_jwks(jwks_uri).get("keys")
    if not isinstance(keys, list):
        raise ValueError("Invalid JWKS keys")

    jwk = next((k for k in keys if isinstance(k, dict) and str(k.get("kid") or "") == kid), None)
    if jwk is None:
        raise ValueError("Unknown signing key (kid)")

    key = jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(jwk))

    claims = jwt.decode(
        id_token,
        key=key,
        algorithms=["RS256"],
        audience=cfg.oidc_client_id,
        issuer=issuer,
        options={
            "require": ["exp", "iat", "iss", "aud", "sub"],
        },
    )
    if not isinstance(claims, dict):
        raise ValueError("Invalid ID token claims")

    nonce = str(claims.get("nonce") or "")
    if not nonce or nonce != expected_nonce:
        raise ValueError("Nonce mismatch")

    # Some providers may not include email_verified claim; treat as optional
    email_verified = claims.get("email_verified")
    if email_verified is not None and email_verified is not True:
        raise ValueError("Email not verified")

    return claims


def claims_from_id_token(cfg: AuthConfig, claims: Dict[str, Any]) -> ProviderClaims:
    """Map validated ID token claims onto the wiki's identity, enforcing the allowed-domain policy."""
    subject = str(claims.get("sub") or "").strip()
    if not subject:
        raise ValueError("Missing sub claim")
    email = str(claims.get("email") or "").strip().lower() or None

    if cfg.allowed_domains:
        domain = email.split("@", 1)[1] if email and "@" in email else ""
        if domain not in set(cfg.allowed_domains):
            raise ValueError("Account domain not allowed")

    return ProviderClaims(
        claimed_identifier=subject,
        email=email,
        name=str(claims.get("name") or "").strip() or email,
        picture=str(claims.get("picture") or "").strip() or None,
    )


class OidcProvider:
    """Identity provider backed by a single configured OIDC client."""

    def __init__(self, cfg: AuthConfig) -> None:
        self._cfg = cfg

    def _begin(self, provider_identifier: str, return_url: str) -> PendingLogon:
        state = random_token(32)
        nonce = random_token(32)
        verifier = random_token(32)  # 43+ chars (base64url) -> valid PKCE verifier
        url = build_authorize_url(
            self._cfg,
            redirect_uri=return_url,
            state=state,
            nonce=nonce,
            code_challenge=pkce_challenge(verifier),
            login_hint=provider_identifier,
        )
        return PendingLogon(redirect_uri=url, return_url=return_url, state=state, nonce=nonce, code_verifier=verifier)

    def _finalize(self, pending: PendingLogon, callback: ProviderCallback) -> ProviderClaims:
        tokens = exchange_code_for_tokens(
            self._cfg,
            redirect_uri=pending.return_url,
            code=callback.code or "",
            code_verifier=pending.code_verifier,
        )
        id_token = str(tokens.get("id_token") or "").strip()
        if not id_token:
            raise ValueError("Missing id_token in token response")
        claims = validate_id_token(self._cfg, id_token=id_token, expected_nonce=pending.nonce)
        return claims_from_id_token(self._cfg, claims)

    async def begin_login(self, provider_identifier: str, return_url: Optional[str]) -> PendingLogon:
        """Start a logon; the visitor must be redirected to `PendingLogon.redirect_uri`."""
        return_url = return_url or self._cfg.logon_url
        if not return_url:
            raise ProviderFailure("AUTH_PUBLIC_BASE_URL is required for OpenID logon")
        try:
            return await asyncio.to_thread(self._begin, provider_identifier, return_url)
        except (requests.RequestException, ValueError) as e:
            logger.warning("OIDC logon could not start: %s", str(e))
            raise ProviderFailure(f"Unable to contact the identity provider: {e}") from e

    async def finalize_login(self, pending: PendingLogon, callback: ProviderCallback) -> ProviderClaims:
        """Complete a logon from the provider's callback parameters."""
        if callback.error:
            if callback.error in ("access_denied", "login_required", "consent_required"):
                raise ProviderCancelled("Logon was cancelled at the identity provider")
            raise ProviderFailure(f"Identity provider error: {callback.error_description or callback.error}")
        if not callback.state or callback.state != pending.state:
            raise ProviderFailure("Invalid OAuth state")
        if not callback.code:
            raise ProviderFailure("Missing authorization code")
        try:
            return await asyncio.to_thread(self._finalize, pending, callback)
        except (requests.RequestException, jwt.PyJWTError, ValueError) as e:
            logger.warning("OIDC logon could not be finalized: %s", str(e))
            raise ProviderFailure(f"Logon failed: {e}") from e
