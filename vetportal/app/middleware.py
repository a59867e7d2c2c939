"""Per-request session wiring and authentication guards."""
from __future__ import annotations

from functools import wraps
from http import HTTPStatus
from typing import Any, Callable

from flask import Flask, current_app, flash, g, jsonify, redirect, request, session
from flask.typing import ResponseReturnValue

from vetportal.app.services.api_client import (
    ADMIN_DOMAIN,
    PORTAL_DOMAIN,
    Unauthenticated,
    build_client,
)
from vetportal.app.services.sessions import AdminSession, PortalSession, SessionStore

CLIENT_FACTORY_KEY = "vetportal.client_factory"


def register_session_middleware(app: Flask) -> None:
    """Build both session stores for every request and handle rejected tokens."""

    app.extensions.setdefault(CLIENT_FACTORY_KEY, build_client)

    @app.before_request
    def _bind_sessions() -> None:
        factory = current_app.extensions[CLIENT_FACTORY_KEY]
        admin_client = factory(ADMIN_DOMAIN, lambda: session.get(AdminSession.token_key))
        portal_client = factory(PORTAL_DOMAIN, lambda: session.get(PortalSession.token_key))
        g.admin_session = AdminSession(admin_client, session)
        g.portal_session = PortalSession(portal_client, session)

    @app.errorhandler(Unauthenticated)
    def _handle_unauthenticated(exc: Unauthenticated) -> ResponseReturnValue:
        store = session_for(exc.domain)
        current_app.logger.info("Session for %s rejected on %s", exc.domain, request.path)
        login_route = store.logout()
        if request.accept_mimetypes.accept_json and not request.accept_mimetypes.accept_html:
            return jsonify(message="Authentication required."), HTTPStatus.UNAUTHORIZED
        flash("Your session has expired. Please sign in again.", "error")
        return redirect(login_route)


def admin_session() -> AdminSession:
    return g.admin_session


def portal_session() -> PortalSession:
    return g.portal_session


def session_for(domain: str) -> SessionStore:
    if domain == PORTAL_DOMAIN:
        return portal_session()
    return admin_session()


def staff_required(view: Callable[..., Any]) -> Callable[..., Any]:
    """Redirect to the staff login unless a valid staff session exists."""

    @wraps(view)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        store = admin_session()
        if store.token and store.user is None:
            store.bootstrap()
        if not store.is_authenticated:
            return redirect(store.login_route)
        return view(*args, **kwargs)

    return wrapper


def portal_required(view: Callable[..., Any]) -> Callable[..., Any]:
    """Redirect to the portal login unless a valid customer session exists."""

    @wraps(view)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        store = portal_session()
        if store.token and store.user is None:
            store.bootstrap()
        if not store.is_authenticated:
            return redirect(store.login_route)
        return view(*args, **kwargs)

    return wrapper
