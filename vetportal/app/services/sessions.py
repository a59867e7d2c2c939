"""Staff and portal session stores.

Each store keeps a bearer token and the cached user record in a key/value
mapping (the browser's cookie session in the running app). The two domains
share mechanics but never keys, API clients or login routes.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, MutableMapping

from vetportal.app.models import PortalProfile
from vetportal.app.services.api_client import (
    ADMIN_DOMAIN,
    PORTAL_DOMAIN,
    ApiClient,
    ClientError,
    error_message,
)

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class AuthResult:
    """Outcome of a login or registration attempt."""

    success: bool
    message: str | None = None


class SessionStore:
    """Token and user persistence shared by both session domains."""

    domain: str = ""
    token_key: str = ""
    user_key: str = ""
    login_route: str = ""

    def __init__(self, client: ApiClient, storage: MutableMapping[str, Any]) -> None:
        self.client = client
        self.storage = storage

    @property
    def token(self) -> str | None:
        return self.storage.get(self.token_key) or None

    @property
    def user(self) -> dict[str, Any] | None:
        raw = self.storage.get(self.user_key)
        if not raw:
            return None
        try:
            user = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            LOGGER.warning("Discarding unreadable %s entry", self.user_key)
            return None
        return user if isinstance(user, dict) else None

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None and self.user is not None

    def store_user(self, user: dict[str, Any] | None) -> None:
        if user is None:
            self.storage.pop(self.user_key, None)
        else:
            self.storage[self.user_key] = json.dumps(user)

    def persist(self, token: str, user: dict[str, Any] | None) -> None:
        self.storage[self.token_key] = token
        self.store_user(user)

    def clear(self) -> None:
        self.storage.pop(self.token_key, None)
        self.storage.pop(self.user_key, None)

    def logout(self) -> str:
        """Forget the session and return the route the caller should redirect to."""

        self.clear()
        LOGGER.info("%s session closed", self.domain)
        return self.login_route

    def _authenticate(self, path: str, payload: dict[str, Any], fallback: str) -> AuthResult:
        try:
            data = self.client.post(path, payload) or {}
        except ClientError as exc:
            self.clear()
            return AuthResult(success=False, message=error_message(exc, fallback))

        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            self.clear()
            return AuthResult(success=False, message=fallback)

        self.persist(token, data.get("user"))
        return AuthResult(success=True)


class AdminSession(SessionStore):
    """Session of clinic staff using the dashboard."""

    domain = ADMIN_DOMAIN
    token_key = "token"
    user_key = "user"
    login_route = "/login"

    def bootstrap(self) -> dict[str, Any] | None:
        """Re-validate a persisted token by fetching the current user."""

        if not self.token:
            return None
        try:
            user = self.client.get("/auth/me")
        except ClientError as exc:
            LOGGER.warning("Stored staff token rejected: %s", exc)
            self.clear()
            return None
        self.store_user(user)
        return user

    def login(self, username: str, password: str) -> AuthResult:
        return self._authenticate(
            "/auth/login",
            {"username": username, "password": password},
            "Unable to sign in.",
        )


class PortalSession(SessionStore):
    """Session of a clinic customer using the portal."""

    domain = PORTAL_DOMAIN
    token_key = "portal_token"
    user_key = "portal_user"
    login_route = "/portal/login"

    def __init__(self, client: ApiClient, storage: MutableMapping[str, Any]) -> None:
        super().__init__(client, storage)
        self.profile: PortalProfile | None = None

    def bootstrap(self) -> PortalProfile | None:
        if not self.token:
            return None
        return self.refresh_profile()

    def refresh_profile(self) -> PortalProfile | None:
        """Fetch the aggregate profile; clears the session if it is rejected."""

        try:
            payload = self.client.get("/portal/profile")
        except ClientError as exc:
            LOGGER.warning("Unable to load portal profile: %s", exc)
            self.clear()
            self.profile = None
            return None

        self.profile = PortalProfile.from_payload(payload)
        if self.profile.user:
            self.store_user(self.profile.user)
        return self.profile

    def login(self, email: str, password: str) -> AuthResult:
        result = self._authenticate(
            "/auth/login",
            {"username": email.lower(), "password": password},
            "Invalid credentials.",
        )
        if result.success:
            self.refresh_profile()
        return result

    def register(self, *, name: str, email: str, phone: str, password: str) -> AuthResult:
        result = self._authenticate(
            "/portal/register",
            {"name": name, "email": email, "phone": phone, "password": password},
            "Registration failed.",
        )
        if result.success:
            self.refresh_profile()
        return result

    def logout(self) -> str:
        self.profile = None
        return super().logout()
