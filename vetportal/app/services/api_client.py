"""Client helpers for talking to the clinic REST API."""
from __future__ import annotations

import http.client
import json
import logging
from http import HTTPStatus
from typing import Any, Callable
import urllib.error
import urllib.parse
import urllib.request
import uuid

from flask import current_app

LOGGER = logging.getLogger(__name__)

ADMIN_DOMAIN = "admin"
PORTAL_DOMAIN = "portal"

TokenProvider = Callable[[], "str | None"]


class ClientError(RuntimeError):
    """Base class for failed API calls.

    ``message`` holds the message supplied by the server, if any, so callers
    can fall back to their own wording when it is missing.
    """

    def __init__(
        self,
        message: str | None = None,
        *,
        status: int | None = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message or f"API request failed (status={status}).")
        self.message = message
        self.status = status
        self.payload = payload


class ApiError(ClientError):
    """Raised for validation, conflict, server and network failures."""

    @property
    def is_conflict(self) -> bool:
        return self.status == HTTPStatus.CONFLICT


class Unauthenticated(ClientError):
    """Raised when the API rejects the bearer token of a session domain."""

    def __init__(self, domain: str, message: str | None = None, *, payload: Any = None) -> None:
        super().__init__(message, status=HTTPStatus.UNAUTHORIZED, payload=payload)
        self.domain = domain


def error_message(exc: ClientError, fallback: str) -> str:
    """Return the server supplied message for ``exc`` or ``fallback``."""

    return exc.message or fallback


class ApiClient:
    """JSON client bound to one session domain and its bearer token."""

    def __init__(
        self,
        base_url: str,
        *,
        domain: str,
        token_provider: TokenProvider,
        timeout: float = 15,
        opener: Callable[..., Any] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.domain = domain
        self.timeout = timeout
        self._token_provider = token_provider
        self._opener = opener or urllib.request.urlopen

    def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, payload: Any = None) -> Any:
        return self.request("POST", path, payload=payload)

    def put(self, path: str, payload: Any = None) -> Any:
        return self.request("PUT", path, payload=payload)

    def patch(self, path: str, payload: Any = None) -> Any:
        return self.request("PATCH", path, payload=payload)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)

    def get_bytes(self, path: str, params: dict[str, Any] | None = None) -> bytes:
        """Fetch a binary resource such as an invoice PDF."""

        return self.request("GET", path, params=params, raw=True)

    def post_file(
        self, path: str, field: str, filename: str, content: bytes, content_type: str
    ) -> Any:
        """Upload one file as ``multipart/form-data``."""

        body, multipart_type = encode_multipart(field, filename, content, content_type)
        return self.request("POST", path, body=body, content_type=multipart_type)

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        payload: Any = None,
        body: bytes | None = None,
        content_type: str | None = None,
        raw: bool = False,
    ) -> Any:
        """Send a request and return the decoded JSON body (or bytes if ``raw``)."""

        url = self._build_url(path, params)
        headers = {"Accept": "application/json"}
        data = body
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            content_type = "application/json"
        if data is not None and content_type:
            headers["Content-Type"] = content_type

        token = self._token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        request = urllib.request.Request(url, data=data, headers=headers, method=method.upper())
        LOGGER.debug("[%s] %s %s", self.domain, method.upper(), url)

        try:
            with self._opener(request, timeout=self.timeout) as response:
                body = response.read()
        except urllib.error.HTTPError as exc:
            raise self._error_from_response(exc.code, _read_error_body(exc)) from exc
        except urllib.error.URLError as exc:
            LOGGER.warning("[%s] unable to reach %s: %s", self.domain, url, exc.reason)
            raise ApiError(status=None) from exc
        except (OSError, http.client.HTTPException) as exc:
            # Timeouts and dropped connections surface from getresponse()/read().
            LOGGER.warning("[%s] connection to %s failed: %s", self.domain, url, exc)
            raise ApiError(status=None) from exc

        if raw:
            return body
        return _decode_json(body)

    def _build_url(self, path: str, params: dict[str, Any] | None) -> str:
        url = self.base_url + "/" + path.lstrip("/")
        if params:
            query = {key: value for key, value in params.items() if value not in (None, "")}
            if query:
                url = f"{url}?{urllib.parse.urlencode(query)}"
        return url

    def _error_from_response(self, status: int, body: bytes) -> ClientError:
        try:
            payload = _decode_json(body)
        except ApiError:
            payload = None

        message = None
        if isinstance(payload, dict) and isinstance(payload.get("message"), str):
            message = payload["message"]

        if status == HTTPStatus.UNAUTHORIZED:
            LOGGER.info("[%s] bearer token rejected by the API", self.domain)
            return Unauthenticated(self.domain, message, payload=payload)

        LOGGER.warning("[%s] API responded with %s: %s", self.domain, status, message)
        return ApiError(message, status=status, payload=payload)


def _read_error_body(exc: urllib.error.HTTPError) -> bytes:
    try:
        return exc.read() or b""
    except (OSError, AttributeError):  # pragma: no cover - body already consumed
        return b""


def _decode_json(body: bytes) -> Any:
    if not body:
        return None
    try:
        return json.loads(body)
    except ValueError as exc:
        # JSONDecodeError, or UnicodeDecodeError for non UTF-8 error pages.
        raise ApiError("The API response was not valid JSON.") from exc


def encode_multipart(field: str, filename: str, content: bytes, content_type: str) -> tuple[bytes, str]:
    """Build a single-file ``multipart/form-data`` body and its content type."""

    boundary = uuid.uuid4().hex
    safe_name = filename.replace('"', "").replace("\r", "").replace("\n", "")
    body = b"\r\n".join(
        [
            f"--{boundary}".encode("ascii"),
            f'Content-Disposition: form-data; name="{field}"; filename="{safe_name}"'.encode("utf-8"),
            f"Content-Type: {content_type}".encode("ascii"),
            b"",
            content,
            f"--{boundary}--".encode("ascii"),
            b"",
        ]
    )
    return body, f"multipart/form-data; boundary={boundary}"


def build_client(domain: str, token_provider: TokenProvider) -> ApiClient:
    """Create an API client configured from the current Flask application."""

    return ApiClient(
        current_app.config["API_BASE_URL"],
        domain=domain,
        token_provider=token_provider,
        timeout=current_app.config.get("API_TIMEOUT", 15),
    )
