from __future__ import annotations

import threading

import pytest

from wiki.data.models import WikiTitle
from wiki.routing.table import RouteTable, plan_page_routes, resolve_missing_route, sync_page_routes


def test_sync_only_adds_missing_aliases() -> None:
    table = RouteTable()
    table.add_route("/home", "Wiki", "Index")

    added = sync_page_routes(table, [WikiTitle(id=1, alias="home", title="Home"), WikiTitle(id=2, alias="faq", title="FAQ")])

    assert [r.alias for r in added] == ["/faq"]
    assert table.find_route("/faq").target == "/Show/2"
    # Existing route untouched.
    assert table.find_route("/home").action == "Index"
    assert len(table) == 2


def test_sync_is_idempotent() -> None:
    table = RouteTable()
    titles = [WikiTitle(id=2, alias="faq", title="FAQ")]
    sync_page_routes(table, titles)

    assert sync_page_routes(table, titles) == []
    assert table.all_aliases() == ["/faq"]


def test_plan_is_pure_and_first_page_wins() -> None:
    existing = {"/Index"}
    titles = [
        WikiTitle(id=1, alias="faq", title="FAQ"),
        WikiTitle(id=3, alias="faq", title="Faq!"),
        WikiTitle(id=4, alias="", title="???"),
        WikiTitle(id=5, alias="Index", title="Index"),
    ]

    planned = plan_page_routes(existing, titles)

    assert [(r.alias, r.params) for r in planned] == [("/faq", ("1",))]
    assert existing == {"/Index"}


def test_add_route_never_overwrites() -> None:
    table = RouteTable()
    table.add_route("faq", "Wiki", "Show", 2)
    with pytest.raises(ValueError):
        table.add_route("/faq", "Wiki", "Show", 7)
    assert table.find_route("/faq").params == ("2",)


def test_remove_route() -> None:
    table = RouteTable()
    table.add_route("/faq", "Wiki", "Show", 2)
    assert table.remove_route("/faq") is not None
    assert "/faq" not in table
    assert table.remove_route("/faq") is None


def test_route_target_is_unquoted_path() -> None:
    table = RouteTable()
    route = table.add_route("/x", "Wiki", "Add", "café menu")
    assert route.target == "/Add/café menu"


def test_missing_wiki_route_goes_to_add() -> None:
    route = resolve_missing_route("/wiki-newpage")
    assert route is not None
    assert route.action == "Add"
    assert route.params == ("newpage",)
    assert route.target == "/Add/newpage"


@pytest.mark.parametrize("path", ["/newpage", "/wiki-", "/wiki-a/b", "/", ""])
def test_missing_route_fallback_ignores_other_paths(path: str) -> None:
    assert resolve_missing_route(path) is None


def test_concurrent_adds_register_each_alias_once() -> None:
    table = RouteTable()
    titles = [WikiTitle(id=i, alias=f"page-{i}", title=f"Page {i}") for i in range(50)]
    results = []

    def worker() -> None:
        results.append(len(sync_page_routes(table, titles)))

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(table) == 50
    assert sum(results) == 50
