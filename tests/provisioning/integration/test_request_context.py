"""Integration tests for request-scoped logging context."""

import pytest
import structlog
from fastapi import FastAPI
from fastapi.testclient import TestClient
from provisioning.api.middleware import REQUEST_ID_HEADER, request_context_middleware


@pytest.fixture()
def context_client():
    app = FastAPI()
    app.middleware("http")(request_context_middleware)

    @app.get("/context")
    def bound_context():
        return structlog.contextvars.get_contextvars()

    return TestClient(app)


def test_request_id_and_path_bound_while_serving(context_client):
    response = context_client.get("/context", headers={REQUEST_ID_HEADER: "req-abc"})
    assert response.json() == {"request_id": "req-abc", "path": "/context"}
    assert response.headers[REQUEST_ID_HEADER] == "req-abc"


def test_request_id_generated_when_absent(context_client):
    response = context_client.get("/context")
    request_id = response.headers[REQUEST_ID_HEADER]
    assert len(request_id) == 32
    assert response.json()["request_id"] == request_id


def test_context_does_not_leak_between_requests(context_client):
    context_client.get("/context", headers={REQUEST_ID_HEADER: "first"})
    response = context_client.get("/context", headers={REQUEST_ID_HEADER: "second"})
    assert response.json()["request_id"] == "second"
    assert structlog.contextvars.get_contextvars() == {}
