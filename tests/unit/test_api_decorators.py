from types import SimpleNamespace

import pytest
from flask import Flask, g, jsonify

from fleet_identity.api import decorators
from fleet_identity.api.errors import register_error_handlers
from fleet_identity.core.errors import Unauthorized
from fleet_identity.core.models import AUTH_METHOD_SECRET, AuthorizationContext


class RecordingGate:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def authorize(self, admin_secret, bearer_token):
        self.calls.append((admin_secret, bearer_token))
        if self.error:
            raise self.error
        return AuthorizationContext(method=AUTH_METHOD_SECRET)


@pytest.fixture
def gate():
    return RecordingGate()


@pytest.fixture
def client(gate):
    app = Flask(__name__)
    app.config["SERVICES"] = SimpleNamespace(gate=gate)
    register_error_handlers(app)

    @app.route("/protected", methods=["GET", "POST"])
    @decorators.require_admin
    def protected():
        return jsonify({"method": g.auth_context.method, "body": g.json_body})

    with app.test_client() as test_client:
        yield test_client


def test_require_admin_passes_secret_and_bearer_to_gate(client, gate):
    response = client.post(
        "/protected",
        json={"adminSecret": "s3cret", "email": "a@x.com"},
        headers={"Authorization": "Bearer tok-123"},
    )

    assert response.status_code == 200
    assert gate.calls == [("s3cret", "tok-123")]
    assert response.get_json() == {
        "method": AUTH_METHOD_SECRET,
        "body": {"adminSecret": "s3cret", "email": "a@x.com"},
    }


def test_require_admin_get_without_body(client, gate):
    response = client.get("/protected")

    assert response.status_code == 200
    assert gate.calls == [(None, None)]


@pytest.mark.parametrize("header", ["Basic abc", "Bearer ", "bearer tok", ""])
def test_malformed_authorization_header_is_ignored(client, gate, header):
    client.get("/protected", headers={"Authorization": header})

    assert gate.calls == [(None, None)]


def test_gate_errors_are_rendered(gate, client):
    gate.error = Unauthorized("Missing credentials")

    response = client.get("/protected")

    assert response.status_code == 401
    assert response.get_json()["details"] == "Missing credentials"


def test_non_string_secret_rejected_before_gate(client, gate):
    response = client.post("/protected", json={"adminSecret": 12345})

    assert response.status_code == 400
    assert gate.calls == []


def test_json_array_body_rejected(client, gate):
    response = client.post("/protected", json=["not", "an", "object"])

    assert response.status_code == 400
    assert response.get_json()["code"] == "invalid_json"
    assert gate.calls == []


def test_payload_too_large(client, gate, monkeypatch):
    monkeypatch.setattr(decorators, "JSON_MAX_SIZE_BYTES", 32)

    response = client.post("/protected", json={"adminSecret": "x" * 64})

    assert response.status_code == 400
    assert response.get_json()["code"] == "payload_too_large"
    assert gate.calls == []
