"""Tests for correlation ID middleware.

Verifies:
- X-Request-ID header in responses
- Custom correlation ID echoing
- Debug ID in error responses without secret leakage
- Different correlation IDs for different requests
"""

import uuid

import pytest

pytestmark = pytest.mark.integration


def test_response_includes_correlation_id_header(make_client):
    """Every API response should include X-Request-ID header with valid UUID."""
    client, _ = make_client()

    response = client.get("/api/health")

    assert "x-request-id" in response.headers
    uuid.UUID(response.headers["x-request-id"])


def test_custom_correlation_id_echoed(make_client):
    """Client-provided X-Request-ID should be echoed back in response."""
    client, _ = make_client()

    response = client.get("/api/health", headers={"X-Request-ID": "custom-id-123"})

    assert response.headers["x-request-id"] == "custom-id-123"


def test_error_response_includes_debug_id(make_client):
    """Error responses should include debug_id without leaking secrets."""
    client, _ = make_client()

    # No bearer token: require_auth raises 401
    response = client.get("/api/builds")

    assert response.status_code == 401
    data = response.json()
    uuid.UUID(data["debug_id"])

    response_text = response.text.lower()
    forbidden_keywords = ["traceback", "password", "secret", "key"]
    leaked = [kw for kw in forbidden_keywords if kw in response_text]
    assert not leaked, f"Response leaked forbidden keywords: {leaked}"


def test_different_requests_get_different_ids(make_client):
    """Each request should get a unique correlation ID."""
    client, _ = make_client()

    id1 = client.get("/api/health").headers["x-request-id"]
    id2 = client.get("/api/health").headers["x-request-id"]

    assert id1 != id2
