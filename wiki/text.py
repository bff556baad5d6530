from __future__ import annotations

import html
import re
from urllib.parse import quote_plus

_SPECIAL_CHARACTERS = re.compile(r"(?:[^a-z0-9 ]|(?<=['\"])s)", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")
_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")
_CODE_BLOCK = re.compile(r"\[cs\](?P<block>[\s\S]+?)\[/cs\]")


def new_lines_to_br(value: str | None) -> str | None:
    if not value:
        return value
    return value.strip().replace("\n", "<br />")


def url_encode(value: str) -> str:
    return quote_plus(value or "")


def html_encode(value: str) -> str:
    return html.escape(value or "", quote=True)


def aliasify(title: str) -> str:
    """
    Turn a page title into its URL alias: drop punctuation and possessive 's, join words with '-'.

    >>> aliasify("Frank's notes!")
    'Frank-notes'
    """
    s = _SPECIAL_CHARACTERS.sub("", title or "").strip()
    return _WHITESPACE.sub("-", s)


def wordify(value: str) -> str:
    """Split a camelCase word into words; all-caps input is returned unchanged."""
    if not re.search(r"[a-z]", value or ""):
        return value
    return " ".join(_CAMEL_BOUNDARY.split(value))


def title_case(value: str) -> str:
    if not value:
        return value
    return " ".join(w[:1].upper() + w[1:] for w in value.lower().split(" "))


def title_from_alias(alias: str) -> str:
    """Suggested page title for an alias typed into the address bar (`wiki-new-page` -> `New Page`)."""
    return title_case(wordify((alias or "").replace("wiki-", "").replace("-", " ")))


def render_page_body(body: str) -> str:
    """
    HTML for a stored page body.

    The body is escaped; `[cs]...[/cs]` blocks become `<pre>` elements for the
    client-side syntax highlighter.
    """
    escaped = html_encode(body)
    return _CODE_BLOCK.sub(lambda m: f'<pre class="brush: csharp">{m.group("block").strip()}</pre>', escaped)
