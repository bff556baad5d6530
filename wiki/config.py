from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class AppConfig:
    title: str
    author: str
    modified_date: str


@lru_cache(maxsize=1)
def load_app_config() -> AppConfig:
    """Application settings shown in page headers and on /About."""
    return AppConfig(
        title=(os.getenv("WIKI_TITLE", "") or "").strip() or "Miranda",
        author=(os.getenv("WIKI_AUTHOR", "") or "").strip(),
        modified_date=(os.getenv("WIKI_MODIFIED_DATE", "") or "").strip(),
    )
