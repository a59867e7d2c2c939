"""Tests for the JSON API client and its error taxonomy."""
from __future__ import annotations

import http.client
import io
import json
from email.message import Message
from http import HTTPStatus
from typing import Any
import unittest
import urllib.error

from vetportal.app.services.api_client import (
    ADMIN_DOMAIN,
    PORTAL_DOMAIN,
    ApiClient,
    ApiError,
    Unauthenticated,
    error_message,
)


class FakeResponse:
    """Minimal context manager mimicking ``urlopen`` results."""

    def __init__(self, body: bytes) -> None:
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        return None


class RecordingOpener:
    """Captures outgoing requests and replays a canned outcome."""

    def __init__(self, *, body: Any = None, status: int = HTTPStatus.OK, error: Exception | None = None) -> None:
        self.body = body
        self.status = status
        self.error = error
        self.requests: list[Any] = []

    def __call__(self, request: Any, timeout: float) -> FakeResponse:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        raw = self.body if isinstance(self.body, bytes) else json.dumps(self.body).encode("utf-8")
        if self.status >= 400:
            raise urllib.error.HTTPError(
                request.full_url, self.status, "error", Message(), io.BytesIO(raw)
            )
        return FakeResponse(raw)


class ApiClientTestCase(unittest.TestCase):
    def _client(self, opener: RecordingOpener, *, token: str | None = "secret", domain: str = ADMIN_DOMAIN) -> ApiClient:
        return ApiClient(
            "http://api.test/api/",
            domain=domain,
            token_provider=lambda: token,
            opener=opener,
        )

    def test_attaches_bearer_token_and_json_body(self) -> None:
        opener = RecordingOpener(body={"id": 1})
        client = self._client(opener)

        result = client.post("/clients", {"name": "Ana"})

        self.assertEqual(result, {"id": 1})
        request = opener.requests[0]
        self.assertEqual(request.full_url, "http://api.test/api/clients")
        self.assertEqual(request.get_method(), "POST")
        self.assertEqual(request.get_header("Authorization"), "Bearer secret")
        self.assertEqual(json.loads(request.data), {"name": "Ana"})

    def test_omits_authorization_without_token(self) -> None:
        opener = RecordingOpener(body=[])
        self._client(opener, token=None).get("/appointments/veterinarians")

        self.assertIsNone(opener.requests[0].get_header("Authorization"))

    def test_query_parameters_skip_empty_values(self) -> None:
        opener = RecordingOpener(body={"slots": []})
        self._client(opener).get(
            "/appointments/availability",
            params={"vetId": 3, "date": "2025-04-10", "durationMinutes": 30, "notes": ""},
        )

        self.assertEqual(
            opener.requests[0].full_url,
            "http://api.test/api/appointments/availability?vetId=3&date=2025-04-10&durationMinutes=30",
        )

    def test_unauthorized_raises_typed_error_for_domain(self) -> None:
        opener = RecordingOpener(body={"message": "Token expired"}, status=HTTPStatus.UNAUTHORIZED)
        client = self._client(opener, domain=PORTAL_DOMAIN)

        with self.assertRaises(Unauthenticated) as ctx:
            client.get("/portal/profile")

        self.assertEqual(ctx.exception.domain, PORTAL_DOMAIN)
        self.assertEqual(ctx.exception.message, "Token expired")
        self.assertEqual(ctx.exception.status, HTTPStatus.UNAUTHORIZED)

    def test_conflict_carries_server_message(self) -> None:
        opener = RecordingOpener(body={"message": "Slot already booked"}, status=HTTPStatus.CONFLICT)

        with self.assertRaises(ApiError) as ctx:
            self._client(opener).post("/appointments", {"vetId": 3})

        self.assertTrue(ctx.exception.is_conflict)
        self.assertEqual(error_message(ctx.exception, "fallback"), "Slot already booked")

    def test_error_without_message_uses_fallback(self) -> None:
        opener = RecordingOpener(body=b"<html>oops</html>", status=HTTPStatus.INTERNAL_SERVER_ERROR)

        with self.assertRaises(ApiError) as ctx:
            self._client(opener).get("/clients")

        self.assertFalse(ctx.exception.is_conflict)
        self.assertEqual(error_message(ctx.exception, "Unable to load clients."), "Unable to load clients.")

    def test_network_failure_becomes_api_error(self) -> None:
        opener = RecordingOpener(error=urllib.error.URLError("connection refused"))

        with self.assertRaises(ApiError) as ctx:
            self._client(opener).get("/clients")

        self.assertIsNone(ctx.exception.status)
        self.assertIsNone(ctx.exception.message)

    def test_timeout_becomes_api_error(self) -> None:
        opener = RecordingOpener(error=TimeoutError("timed out"))

        with self.assertRaises(ApiError) as ctx:
            self._client(opener).get("/clients")

        self.assertIsNone(ctx.exception.status)
        self.assertEqual(error_message(ctx.exception, "Unable to load clients."), "Unable to load clients.")

    def test_dropped_connections_become_api_errors(self) -> None:
        failures = [
            ConnectionResetError("connection reset by peer"),
            http.client.RemoteDisconnected("Remote end closed connection without response"),
        ]
        for failure in failures:
            with self.subTest(failure=type(failure).__name__):
                with self.assertRaises(ApiError) as ctx:
                    self._client(RecordingOpener(error=failure)).post("/appointments", {"vetId": 3})

                self.assertIsNone(ctx.exception.status)

    def test_non_utf8_error_page_becomes_api_error(self) -> None:
        opener = RecordingOpener(body=b"\xff\xfe\xfa bad gateway", status=HTTPStatus.BAD_GATEWAY)

        with self.assertRaises(ApiError) as ctx:
            self._client(opener).get("/clients")

        self.assertEqual(ctx.exception.status, HTTPStatus.BAD_GATEWAY)
        self.assertIsNone(ctx.exception.message)

    def test_non_utf8_success_body_becomes_api_error(self) -> None:
        opener = RecordingOpener(body=b"\xff\xfe\xfa")

        with self.assertRaises(ApiError):
            self._client(opener).get("/clients")

    def test_patch_sends_json_body(self) -> None:
        opener = RecordingOpener(body={"id": 5, "status": "pagado"})

        self._client(opener).patch("/payments/plans/5", {"status": "pagado"})

        request = opener.requests[0]
        self.assertEqual(request.get_method(), "PATCH")
        self.assertEqual(json.loads(request.data), {"status": "pagado"})

    def test_post_file_sends_multipart_body(self) -> None:
        opener = RecordingOpener(body={"id": 2})

        result = self._client(opener).post_file(
            "/medical/records/3/upload", "image", 'x"ray.png', b"\x89PNG-data", "image/png"
        )

        self.assertEqual(result, {"id": 2})
        request = opener.requests[0]
        content_type = request.get_header("Content-type")
        self.assertTrue(content_type.startswith("multipart/form-data; boundary="))
        boundary = content_type.split("boundary=", 1)[1]
        self.assertTrue(request.data.startswith(f"--{boundary}\r\n".encode("ascii")))
        self.assertIn(b'name="image"; filename="xray.png"', request.data)
        self.assertIn(b"Content-Type: image/png\r\n\r\n\x89PNG-data\r\n", request.data)
        self.assertTrue(request.data.endswith(f"--{boundary}--\r\n".encode("ascii")))

    def test_get_bytes_returns_raw_body(self) -> None:
        opener = RecordingOpener(body=b"%PDF-1.4")

        self.assertEqual(self._client(opener).get_bytes("/invoices/4/pdf"), b"%PDF-1.4")

    def test_empty_body_decodes_to_none(self) -> None:
        opener = RecordingOpener(body=b"")

        self.assertIsNone(self._client(opener).delete("/clients/2"))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
