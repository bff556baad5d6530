from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class WikiUser:
    """Wiki account. `identifier` is the OpenID subject; `password_hash` is bcrypt."""

    id: int
    user_name: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    identifier: Optional[str] = None
    password_hash: Optional[str] = None


@dataclass(frozen=True)
class WikiTitle:
    id: int
    alias: str
    title: str


@dataclass
class WikiPage:
    id: Optional[int]
    alias: str
    title: str
    body: str
    author_id: Optional[int] = None
    created_on: Optional[datetime] = None
    modified_on: Optional[datetime] = None
    published: bool = True


@dataclass(frozen=True)
class WikiTag:
    id: int
    name: str
    created_on: Optional[datetime] = None
