from __future__ import annotations

import base64
import hashlib
import os


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_token(nbytes: int = 32) -> str:
    return b64url(os.urandom(nbytes))


def pkce_challenge(verifier: str) -> str:
    """
    Generate PKCE challenge from verifier using SHA256.
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return b64url(digest)


def sanitize_next_path(next_path: str | None) -> str:
    """
    Prevent open-redirects: allow only relative paths like `/Index`.
    """
    p = (next_path or "").strip()
    if not p:
        return "/Index"
    if not p.startswith("/"):
        return "/Index"
    # Disallow scheme-relative: `//evil.com`
    if p.startswith("//"):
        return "/Index"
    p = p.replace("\r", "").replace("\n", "")
    return p or "/Index"
