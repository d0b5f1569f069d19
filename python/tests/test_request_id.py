"""Tests for X-Request-ID middleware.

Tests cover:
- Request ID generation when missing
- Request ID preservation when valid
- Request ID normalization (UUID lowercase)
- Request ID replacement when invalid
- Request ID in error response body
- Access log entries carry the backend of the request
"""

from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from structlog.testing import capture_logs

from glass.app import create_app
from glass.middleware.request_id import (
    is_valid_request_id,
    normalize_request_id,
)
from tests.helpers import session_data


class TestRequestIdHeader:
    def test_generated_when_missing(self, client: TestClient):
        response = client.get("/health")

        request_id = response.headers["X-Request-ID"]
        assert UUID(request_id)

    def test_valid_id_preserved(self, client: TestClient):
        response = client.get("/health", headers={"X-Request-ID": "shell-req_42.a"})

        assert response.headers["X-Request-ID"] == "shell-req_42.a"

    def test_uuid_lowercased(self, client: TestClient):
        value = "3F2504E0-4F89-11D3-9A0C-0305E82C3301"

        response = client.get("/health", headers={"X-Request-ID": value})

        assert response.headers["X-Request-ID"] == value.lower()

    @pytest.mark.parametrize("value", ["has spaces", "a" * 129, "semi;colon"])
    def test_invalid_id_replaced(self, client: TestClient, value: str):
        response = client.get("/health", headers={"X-Request-ID": value})

        request_id = response.headers["X-Request-ID"]
        assert request_id != value
        assert UUID(request_id)

    def test_error_body_carries_request_id(self, client: TestClient):
        response = client.get("/sessions/missing/messages", headers={"X-Request-ID": "trace-1"})

        assert response.status_code == 404
        assert response.json()["error"]["request_id"] == "trace-1"
        assert response.headers["X-Request-ID"] == "trace-1"


class TestValidation:
    def test_helpers(self):
        assert is_valid_request_id("abc-123")
        assert not is_valid_request_id("")
        assert not is_valid_request_id("ü" * 70)
        assert normalize_request_id("ABC") == "ABC"


class TestAccessLog:
    def test_entry_names_the_backend_of_the_request(self, app_container):
        app = create_app(container=app_container)
        with TestClient(app) as client, capture_logs() as logs:
            client.get("/health", headers={"X-Request-ID": "signed-out"})
            client.portal.call(app_container.auth.sign_in, session_data("u1"))
            client.get("/health", headers={"X-Request-ID": "signed-in"})

        entries = [e for e in logs if e["event"] == "request_completed"]
        assert [(e["path"], e["backend"]) for e in entries] == [("/health", "local"), ("/health", "remote")]
