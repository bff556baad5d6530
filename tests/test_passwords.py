from __future__ import annotations

import pytest

from wiki.auth.passwords import hash_password, verify_password


def test_hash_and_verify() -> None:
    h = hash_password("s3cret")
    assert h.startswith("$2")
    assert verify_password("s3cret", h) is True
    assert verify_password("S3cret", h) is False


def test_empty_password_cannot_be_hashed() -> None:
    with pytest.raises(ValueError):
        hash_password("")


def test_legacy_or_missing_hash_never_verifies() -> None:
    # e.g. an unsalted SHA1 hex digest left in the users table
    assert verify_password("s3cret", "5baa61e4c9b93f3f0682250b6cf8331b7ee68fd8") is False
    assert verify_password("s3cret", "") is False
    assert verify_password("", "$2b$12$abcdefghijklmnopqrstuu") is False
