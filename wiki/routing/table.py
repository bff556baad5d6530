"""
URL aliases for wiki pages.

The application's fixed paths and one alias per page (`/<page alias>`) live in a
`RouteTable`. An incoming path is looked up here before FastAPI routes it: an
alias is dispatched to its target (`/faq` -> `/Show/2`), and an unmatched
`/wiki-<name>` path goes to the add-page form for `<name>`.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from wiki.data.models import WikiTitle

logger = logging.getLogger(__name__)

WIKI_CONTROLLER = "Wiki"
SHOW_ACTION = "Show"
ADD_ACTION = "Add"
MISSING_PAGE_PREFIX = "wiki-"


@dataclass(frozen=True)
class Route:
    alias: str
    controller: str
    action: str
    params: Tuple[str, ...] = ()

    @property
    def target(self) -> str:
        """Application path this route dispatches to, unquoted as ASGI expects in `scope["path"]`."""
        return "/" + "/".join([self.action, *self.params])


def _normalize_alias(alias: str) -> str:
    a = (alias or "").strip()
    if not a.startswith("/"):
        a = "/" + a
    return a


class RouteTable:
    """Append-mostly alias table shared by all requests."""

    def __init__(self) -> None:
        self._routes: Dict[str, Route] = {}
        self._lock = threading.Lock()

    def all_aliases(self) -> List[str]:
        with self._lock:
            return list(self._routes.keys())

    def add_route(self, alias: str, controller: str, action: str, *params: object) -> Route:
        """
        Register `alias`.

        Raises:
            ValueError: If the alias is already registered (existing routes are never overwritten)
        """
        route = Route(
            alias=_normalize_alias(alias),
            controller=controller,
            action=action,
            params=tuple(str(p) for p in params),
        )
        with self._lock:
            if route.alias in self._routes:
                raise ValueError(f"Route alias already registered: {route.alias}")
            self._routes[route.alias] = route
        logger.debug("Registered route %s -> %s.%s%s", route.alias, controller, action, list(route.params))
        return route

    def remove_route(self, alias: str) -> Optional[Route]:
        with self._lock:
            return self._routes.pop(_normalize_alias(alias), None)

    def find_route(self, path: str) -> Optional[Route]:
        with self._lock:
            return self._routes.get(path)

    def __contains__(self, alias: object) -> bool:
        with self._lock:
            return alias in self._routes

    def __len__(self) -> int:
        with self._lock:
            return len(self._routes)


def plan_page_routes(existing_aliases: Iterable[str], titles: Iterable[WikiTitle]) -> List[Route]:
    """
    Routes to add so that every page is reachable at `/<alias>`.

    Aliases already registered are skipped, never overwritten; a duplicate alias
    within `titles` is planned once (first page wins).
    """
    taken = set(existing_aliases)
    planned: List[Route] = []
    for t in titles:
        if not t.alias:
            continue
        alias = "/" + t.alias
        if alias in taken:
            continue
        taken.add(alias)
        planned.append(Route(alias=alias, controller=WIKI_CONTROLLER, action=SHOW_ACTION, params=(str(t.id),)))
    return planned


def sync_page_routes(table: RouteTable, titles: Iterable[WikiTitle]) -> List[Route]:
    """Register page aliases missing from `table`; returns the routes that were added."""
    added: List[Route] = []
    for route in plan_page_routes(table.all_aliases(), titles):
        try:
            added.append(table.add_route(route.alias, route.controller, route.action, *route.params))
        except ValueError:
            # Registered concurrently (e.g. by a page save) since the plan was made.
            continue
    return added


def resolve_missing_route(path: str) -> Optional[Route]:
    """
    Fallback for paths with no route: `/wiki-<name>` opens the add-page form for `<name>`.
    """
    p = (path or "").strip("/")
    # Single segment only: `/wiki-a/b` is not a page name.
    if not p.startswith(MISSING_PAGE_PREFIX) or "/" in p:
        return None
    name = p[len(MISSING_PAGE_PREFIX) :]
    if not name:
        return None
    return Route(alias="/" + p, controller=WIKI_CONTROLLER, action=ADD_ACTION, params=(name,))
