"""
Wiki web application.

Every request passes through `wiki_request_pipeline`, which:
- maps page aliases (and the `/wiki-<name>` fallback) onto application paths,
- loads the signed session cookie and the logged-on user,
- redirects anonymous visitors to /Logon for anything not public,
- writes the session cookie back when it changed.

The logon strategy is chosen once at startup from WIKI_AUTH_STRATEGY.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Callable, Dict, Iterator, List, Optional
from urllib.parse import quote

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from pydantic import BaseModel

from wiki.auth.config import STRATEGY_USERPASS, AuthConfig, load_auth_config
from wiki.auth.facade import Authentication, build_strategy
from wiki.auth.models import AuthRequest, Credentials, CurrentUser, OpenAuthLogon, ProviderCallback
from wiki.auth.session import (
    CURRENT_USER_KEY,
    OPENAUTH_STEP2_KEY,
    CookieSession,
    clear_session_cookie_kwargs,
    decode_session,
    encode_session,
    session_cookie_kwargs,
    session_cookie_name,
)
from wiki.auth.util import sanitize_next_path
from wiki.bundles import build_bundle
from wiki.config import load_app_config
from wiki.data.models import WikiPage, WikiUser
from wiki.data.store import WikiData, open_wiki_data
from wiki.routing.table import SHOW_ACTION, WIKI_CONTROLLER, Route, RouteTable, resolve_missing_route, sync_page_routes
from wiki.text import aliasify, html_encode, new_lines_to_br, render_page_body, title_from_alias, url_encode

logger = logging.getLogger(__name__)

app = FastAPI(title="Miranda wiki")

ADMIN_ROLE = "Admin"
USER_ROLE = "User"
LOGON_PATH = "/Logon"
INDEX_PATH = "/Index"
NO_ACCESS_MESSAGE = "You do not have access to this system"


def _is_public_path(path: str) -> bool:
    # Health checks and logon/logoff must work without a logged-on user.
    if path in ("/healthz", LOGON_PATH, "/Logoff"):
        return True
    # Stylesheets and scripts are needed by the logon page itself.
    if path.startswith("/bundles/"):
        return True
    return False


def _matches_app_route(path: str) -> bool:
    for route in app.router.routes:
        regex = getattr(route, "path_regex", None)
        if regex is not None and regex.match(path):
            return True
    return False


def _dispatch_path(path: str) -> str:
    """Application path that should serve `path` (itself when no alias applies)."""
    table: Optional[RouteTable] = getattr(app.state, "route_table", None)
    if table is None:
        return path
    route = table.find_route(path)
    if route is None and not _matches_app_route(path):
        route = resolve_missing_route(path)
    return route.target if route is not None else path


def _save_session(cfg: AuthConfig, session: CookieSession, response: Response) -> None:
    if not session.modified:
        return
    if len(session) == 0:
        response.set_cookie(**clear_session_cookie_kwargs(cfg))
        return
    value = encode_session(cfg, session)
    if value is None:
        logger.warning("Session not saved: AUTH_SESSION_SECRET is not configured")
        return
    response.set_cookie(**session_cookie_kwargs(cfg, value))


@app.on_event("startup")
def _startup_auth_strategy() -> None:
    """Pick the logon strategy once; an unknown WIKI_AUTH_STRATEGY fails startup."""
    cfg = load_auth_config()
    app.state.auth_strategy = build_strategy(cfg)
    if not cfg.session_secret:
        logger.warning("AUTH_SESSION_SECRET is not set; visitors will not be able to stay logged on")
    logger.info("Authentication strategy: %s", cfg.strategy)


@app.on_event("startup")
def _startup_maybe_migrate_db() -> None:
    """
    Optional dev behavior: auto-apply DB migrations when DB_AUTO_MIGRATE=1.

    This should never prevent the server from starting; failures are logged.
    """
    try:
        from wiki.data.migrate import maybe_auto_migrate

        did_attempt, msg = maybe_auto_migrate()
        if did_attempt:
            logger.info("DB migrations: %s", msg)
    except Exception as e:
        logger.warning("DB migrations: startup auto-migrate failed: %s", str(e))


@app.on_event("startup")
def _startup_sync_routes() -> None:
    """
    Build the route table: the application's fixed paths, then one alias per wiki page.

    Pages added after startup get their alias when they are saved.
    """
    table = RouteTable()
    for route in app.router.routes:
        path = getattr(route, "path", "") or ""
        if path and "{" not in path and path not in table:
            table.add_route(path, WIKI_CONTROLLER, path.lstrip("/"))
    app.state.route_table = table

    data = open_wiki_data()
    if data is None:
        logger.warning("Page routes not synchronized: database not configured")
        return
    try:
        added = sync_page_routes(table, data.get_all_page_titles())
        logger.info("Registered %d page route(s)", len(added))
    except Exception as e:
        logger.warning("Page route synchronization failed: %s", str(e))
    finally:
        data.close()


@app.middleware("http")
async def wiki_request_pipeline(request: Request, call_next):
    """Alias dispatch, session handling and logon enforcement for every request."""
    start_time = time.time()
    path = request.url.path or ""
    logger.debug("%s %s", request.method, path)
    try:
        target = _dispatch_path(path)
        if target != path:
            request.scope["path"] = target
            logger.debug("Dispatching %s -> %s", path, target)

        cfg = load_auth_config()
        session = decode_session(cfg, request.cookies.get(session_cookie_name(cfg)))
        request.state.session = session
        request.state.user = CurrentUser.from_session(session.get(CURRENT_USER_KEY))

        if request.method != "OPTIONS" and not _is_public_path(target) and request.state.user is None:
            response: Response = RedirectResponse(url=LOGON_PATH, status_code=302)
        else:
            response = await call_next(request)

        _save_session(cfg, session, response)
        process_time = time.time() - start_time
        logger.debug("%s %s - %d (%.3fs)", request.method, path, response.status_code, process_time)
        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, path, process_time, str(e))
        raise


# ---- Dependencies ----


def get_data() -> Iterator[WikiData]:
    data = open_wiki_data()
    if data is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    try:
        yield data
    finally:
        data.close()


def get_authentication(request: Request) -> Authentication:
    return Authentication(request.app.state.auth_strategy, getattr(request.state, "session", None))


def require_role(*roles: str) -> Callable[[Request], CurrentUser]:
    def _require(request: Request) -> CurrentUser:
        user: Optional[CurrentUser] = getattr(request.state, "user", None)
        if user is None:
            raise HTTPException(status_code=401, detail="Unauthorized")
        if not user.in_role(*roles):
            raise HTTPException(status_code=403, detail=NO_ACCESS_MESSAGE)
        return user

    return _require


def _route_table(request: Request) -> RouteTable:
    return request.app.state.route_table


def _view(request: Request, **ctx: Any) -> Dict[str, Any]:
    """Response body shared by all wiki views (app title, logged-on user)."""
    user: Optional[CurrentUser] = getattr(request.state, "user", None)
    base: Dict[str, Any] = {
        "ok": True,
        "app_title": load_app_config().title,
        "current_user": user.user_name if user else None,
        "log_off": "/Logoff" if user else None,
    }
    base.update(ctx)
    return base


def _no_store(resp: Response) -> Response:
    resp.headers["Cache-Control"] = "no-store"
    return resp


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


# ---- Logon / logoff ----


class LogonForm(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    identifier: Optional[str] = None


def _logon_form(cfg: AuthConfig) -> Dict[str, Any]:
    if cfg.strategy == STRATEGY_USERPASS:
        return {"action": LOGON_PATH, "fields": ["username", "password"]}

    form: Dict[str, Any] = {"action": LOGON_PATH, "fields": ["identifier"]}
    if cfg.oidc_enabled:
        try:
            from wiki.auth.oidc import get_provider_metadata

            form["provider"] = get_provider_metadata(cfg)
        except Exception as e:
            logger.warning("Failed to get OIDC provider metadata: %s", str(e))
    return form


def _find_wiki_user(cfg: AuthConfig, auth: Authentication, data: WikiData) -> Optional[WikiUser]:
    if cfg.strategy == STRATEGY_USERPASS:
        return data.get_user_by_user_name(auth.name or "")
    return data.get_user_by_identifier(auth.identifier or "")


def _log_on(request: Request, user: WikiUser) -> CurrentUser:
    current = CurrentUser(id=user.id, user_name=user.user_name, roles=[ADMIN_ROLE])
    request.state.session.set(CURRENT_USER_KEY, current.to_session())
    request.state.user = current
    logger.info("User %s logged on", user.user_name)
    return current


async def _logon(
    request: Request,
    auth: Authentication,
    data: WikiData,
    auth_request: AuthRequest,
    *,
    next_path: Optional[str],
    failure_status: int = 200,
    failure_message: Optional[str] = None,
) -> Response:
    cfg = load_auth_config()
    await auth.initialize(auth_request)

    if auth.redirect_url:
        return _no_store(RedirectResponse(url=auth.redirect_url, status_code=302))

    status = 200
    message: Optional[str] = None
    if auth.authenticated:
        user = _find_wiki_user(cfg, auth, data)
        if user is not None:
            _log_on(request, user)
            return _no_store(RedirectResponse(url=sanitize_next_path(next_path), status_code=302))
        status, message = 403, NO_ACCESS_MESSAGE
    elif auth.error_message:
        status, message = failure_status, auth.error_message
    elif failure_message:
        status, message = failure_status, failure_message

    body = _view(request, strategy=auth.strategy_name, message=message, logon_form=_logon_form(cfg))
    return _no_store(JSONResponse(status_code=status, content=body))


@app.get("/Logon")
async def logon_form(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    next_path: Optional[str] = Query(None, alias="next"),
    data: WikiData = Depends(get_data),
    auth: Authentication = Depends(get_authentication),
) -> Response:
    """Logon view; also where the identity provider sends the visitor back."""
    callback = None
    if code or error:
        callback = ProviderCallback(code=code, state=state, error=error, error_description=error_description)
    auth_request = AuthRequest(callback=callback, users=data)
    return await _logon(request, auth, data, auth_request, next_path=next_path)


@app.post("/Logon")
async def logon_submit(
    request: Request,
    form: LogonForm,
    next_path: Optional[str] = Query(None, alias="next"),
    data: WikiData = Depends(get_data),
    auth: Authentication = Depends(get_authentication),
) -> Response:
    cfg = load_auth_config()
    if cfg.strategy == STRATEGY_USERPASS:
        username = (form.username or "").strip()
        password = form.password or ""
        if not username or not password:
            raise HTTPException(status_code=400, detail="Username and Password are required fields.")
        auth_request = AuthRequest(credentials=Credentials(user_name=username, password=password), users=data)
        return await _logon(
            request,
            auth,
            data,
            auth_request,
            next_path=next_path,
            failure_status=401,
            failure_message="Invalid username or password",
        )

    identifier = (form.identifier or "").strip()
    if not identifier:
        raise HTTPException(status_code=400, detail="An OpenID identifier is required.")
    auth_request = AuthRequest(logon=OpenAuthLogon(identifier=identifier), return_url=cfg.logon_url, users=data)
    # A finished handshake is replayed until /Logoff; only a new begin_login can fail upstream.
    upstream_status = 200 if OPENAUTH_STEP2_KEY in request.state.session else 502
    return await _logon(request, auth, data, auth_request, next_path=next_path, failure_status=upstream_status)


@app.get("/Logoff")
def logoff(request: Request, auth: Authentication = Depends(get_authentication)) -> Response:
    user: Optional[CurrentUser] = getattr(request.state, "user", None)
    request.state.session.set(CURRENT_USER_KEY, None)
    auth.abandon()
    if user is not None:
        logger.info("User %s logged off", user.user_name)
    return _no_store(RedirectResponse(url=LOGON_PATH, status_code=302))


# ---- Wiki pages ----


class PageData(BaseModel):
    id: Optional[int] = None
    title: Optional[str] = None
    data: Optional[str] = None
    tags: Optional[str] = None


def _page_form(*, page: Optional[WikiPage] = None, title: str = "", tags: Optional[List[str]] = None) -> Dict[str, Any]:
    return {
        "action": "/Save",
        "id": page.id if page else None,
        "title": page.title if page else title,
        "data": page.body if page else "",
        "preselected_tags": tags or [],
        "available_tags": [],
    }


@app.get("/Index")
def index(
    request: Request,
    data: WikiData = Depends(get_data),
    _user: CurrentUser = Depends(require_role(USER_ROLE, ADMIN_ROLE)),
) -> Dict[str, Any]:
    titles = data.get_all_page_titles()
    if not titles:
        return _view(request, content="There are no pages in this wiki", pages=[])

    pages = [{"id": t.id, "title": t.title, "alias": t.alias, "href": "/" + url_encode(t.alias)} for t in titles]
    content = " | ".join(f'<a href="{p["href"]}">{html_encode(p["title"].replace(" ", "_"))}</a>' for p in pages)
    return _view(request, content=content, pages=pages)


@app.get("/Add")
def add(request: Request, _user: CurrentUser = Depends(require_role(ADMIN_ROLE))) -> Dict[str, Any]:
    return _view(request, wiki_page_form=_page_form())


@app.get("/Add/{alias}")
def add_from_alias(
    request: Request,
    alias: str,
    _user: CurrentUser = Depends(require_role(ADMIN_ROLE)),
) -> Dict[str, Any]:
    """New-page form with the title suggested by the (missing) alias the visitor asked for."""
    return _view(request, wiki_page_form=_page_form(title=title_from_alias(alias)))


@app.get("/Show/{page_id}")
def show(
    request: Request,
    page_id: int,
    data: WikiData = Depends(get_data),
    _user: CurrentUser = Depends(require_role(USER_ROLE, ADMIN_ROLE)),
) -> Any:
    page = data.get_page(page_id)
    if page is None:
        return JSONResponse(
            status_code=404,
            content=_view(request, title="Error!", data="The requested wiki does not exist"),
        )

    tags = [t.name for t in data.get_page_tags(page_id)]
    return _view(
        request,
        app_title=page.title,
        id=page.id,
        title=page.title,
        data=render_page_body(page.body),
        menu={"edit": f"/Edit/{page.id}", "delete": f"/Delete/{page.id}"},
        tags=tags,
        filed_under=", ".join(tags) or None,
    )


@app.get("/Edit/{page_id}")
def edit(
    request: Request,
    page_id: int,
    data: WikiData = Depends(get_data),
    _user: CurrentUser = Depends(require_role(ADMIN_ROLE)),
) -> Dict[str, Any]:
    page = data.get_page(page_id)
    if page is None:
        return _view(request, wiki_page_form=_page_form())
    tags = [t.name for t in data.get_page_tags(page_id)]
    return _view(request, wiki_page_form=_page_form(page=page, tags=tags))


def _validate_page_data(form: PageData) -> List[str]:
    errors: List[str] = []
    if not (form.title or "").strip():
        errors.append("The wiki title is a required field.")
    if not (form.data or "").strip():
        errors.append("The wiki data is a required field.")
    elif (form.title or "").strip() and not aliasify(form.title or ""):
        errors.append("The wiki title must contain letters or digits.")
    return errors


def _owned_page_route(table: RouteTable, alias: str, page_id: int) -> Optional[Route]:
    route = table.find_route("/" + alias)
    if route is None or route.target != f"/{SHOW_ACTION}/{page_id}":
        return None
    return route


def _save_tags(data: WikiData, page_id: int, raw_tags: Optional[str]) -> None:
    data.delete_page_tags(page_id)
    incoming = [t.strip() for t in (raw_tags or "").split(",") if t.strip()]
    if not incoming:
        return
    known = {t.name for t in data.get_all_tags()}
    for name in incoming:
        if name not in known:
            data.add_tag(name)
            known.add(name)
    for name in incoming:
        data.add_page_tag(page_id, name)


@app.post("/Save")
def save(
    request: Request,
    form: PageData,
    data: WikiData = Depends(get_data),
    user: CurrentUser = Depends(require_role(ADMIN_ROLE)),
) -> Response:
    errors = _validate_page_data(form)
    if errors:
        return JSONResponse(
            status_code=400,
            content=_view(request, ok=False, error=new_lines_to_br("\n".join(errors))),
        )

    title = (form.title or "").strip()
    body = form.data or ""
    alias = aliasify(title)

    table = _route_table(request)
    page = data.get_page(form.id) if form.id is not None else None
    if page is None:
        page = data.add_page(WikiPage(id=None, alias=alias, title=title, body=body, author_id=user.id))
        logger.info("Page %d (%s) created by %s", page.id, alias, user.user_name)
    else:
        if page.alias != alias and _owned_page_route(table, page.alias, page.id) is not None:
            table.remove_route("/" + page.alias)
        page.alias = alias
        page.title = title
        page.body = body
        page.author_id = user.id
        data.update_page(page)
        logger.info("Page %d (%s) updated by %s", page.id, alias, user.user_name)

    _save_tags(data, page.id, form.tags)

    route_alias = "/" + page.alias
    if route_alias not in table:
        try:
            table.add_route(route_alias, WIKI_CONTROLLER, SHOW_ACTION, page.id)
        except ValueError:
            logger.debug("Route %s registered concurrently", route_alias)

    if _owned_page_route(table, page.alias, page.id) is not None:
        location = quote(route_alias)
    else:
        # Alias taken by a fixed path or another page.
        location = f"/Show/{page.id}"
    return RedirectResponse(url=location, status_code=303)


@app.post("/Delete/{page_id}")
def delete(
    request: Request,
    page_id: int,
    data: WikiData = Depends(get_data),
    user: CurrentUser = Depends(require_role(ADMIN_ROLE)),
) -> Response:
    page = data.get_page(page_id)
    if page is not None:
        table = _route_table(request)
        # Only drop the alias if it belongs to this page (never a fixed path).
        if _owned_page_route(table, page.alias, page_id) is not None:
            table.remove_route("/" + page.alias)
        data.delete_page(page_id)
        logger.info("Page %d (%s) deleted by %s", page_id, page.alias, user.user_name)
    return RedirectResponse(url=INDEX_PATH, status_code=303)


@app.get("/About")
def about(request: Request, _user: CurrentUser = Depends(require_role(USER_ROLE, ADMIN_ROLE))) -> Dict[str, Any]:
    cfg = load_app_config()
    return _view(
        request,
        content={"app_name": cfg.title, "author": cfg.author, "last_update": cfg.modified_date},
    )


@app.get("/Aliases")
def aliases(request: Request, _user: CurrentUser = Depends(require_role(USER_ROLE, ADMIN_ROLE))) -> Dict[str, Any]:
    all_aliases = _route_table(request).all_aliases()
    return _view(request, content=", ".join(all_aliases), aliases=all_aliases)


@app.get("/bundles/{name}")
def bundle(name: str) -> Response:
    try:
        content, media_type = build_bundle(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown bundle: {name}")
    return Response(content=content, media_type=media_type, headers={"Cache-Control": "public, max-age=3600"})


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    # Configure logging for the application
    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting wiki server on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
