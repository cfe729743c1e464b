import types

import pytest
from fastapi.testclient import TestClient

from contact_relay.api import API_TOKEN_HEADER_NAME, create_app
from contact_relay.config_loader import ConfigError
from contact_relay.pipeline import RATE_LIMIT_BODY

from conftest import HONEYPOT, TENANT_KEY, RecordingHandler


API_TOKEN = "secret-token"


@pytest.fixture
def calls():
    return []


@pytest.fixture
def pipeline(make_pipeline, calls):
    return make_pipeline(handlers=[RecordingHandler("recorder", calls)], limit=2)


@pytest.fixture
def client(pipeline):
    return TestClient(create_app(pipeline, api_token=API_TOKEN))


@pytest.fixture
def admin(client):
    client.headers.update({API_TOKEN_HEADER_NAME: API_TOKEN})
    return client


def test_health_needs_no_token(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_contact_accepted(client, valid_fields, calls):
    response = client.post("/contact", data=valid_fields)
    assert response.status_code == 200
    assert response.text == ""
    assert calls == ["recorder"]


def test_contact_missing_fields(client, calls):
    response = client.post("/contact", data={"name": "Ann"})
    assert response.status_code == 400
    assert calls == []


def test_contact_honeypot(client, valid_fields, calls):
    response = client.post("/contact", data={**valid_fields, HONEYPOT: "http://spam"})
    assert response.status_code == 400
    assert calls == []


def test_contact_invalid_email_reason_in_body(client, valid_fields):
    response = client.post("/contact", data={**valid_fields, "email": "nope"})
    assert response.status_code == 400
    assert response.text.startswith("email: ")


def test_contact_rate_limited(client, valid_fields, calls):
    statuses = [client.post("/contact", data=valid_fields).status_code for _ in range(2)]
    limited = client.post("/contact", data=valid_fields)
    assert statuses == [200, 200]
    assert limited.status_code == 429
    assert limited.text == RATE_LIMIT_BODY
    assert calls == ["recorder", "recorder"]


def test_contact_handler_failure_is_500(make_pipeline, valid_fields):
    pipeline = make_pipeline(handlers=[RecordingHandler("down", [], fail=True)])
    response = TestClient(create_app(pipeline)).post("/contact", data=valid_fields)
    assert response.status_code == 500


def test_contact_needs_no_token(client, valid_fields):
    assert API_TOKEN_HEADER_NAME not in client.headers
    assert client.post("/contact", data=valid_fields).status_code == 200


@pytest.mark.parametrize("path", ["/clients", "/handlers", "/metrics"])
def test_admin_endpoints_require_token(client, path):
    assert client.get(path).status_code == 401
    assert client.get(path, headers={API_TOKEN_HEADER_NAME: "wrong"}).status_code == 401


def test_no_token_configured_allows_admin(make_pipeline):
    client = TestClient(create_app(make_pipeline()))
    assert client.get("/handlers").status_code == 200


def test_list_clients(admin):
    response = admin.get("/clients")
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["clients"] == [
        {
            "public_key": TENANT_KEY,
            "name": "Example Ltd",
            "recipients": ["contact@example.com"],
            "webhook": False,
        }
    ]


def test_list_handlers(admin):
    response = admin.get("/handlers")
    assert response.json() == {"ok": True, "handlers": ["recorder"]}


def test_metrics_after_submission(admin, valid_fields):
    admin.post("/contact", data=valid_fields)
    response = admin.get("/metrics")
    assert response.status_code == 200
    assert 'crl_submissions_total{outcome="accepted",realm="tenantKey123"} 1.0' in response.text


def test_metrics_unavailable_without_prometheus_observer():
    pipeline = types.SimpleNamespace(observer=object())
    client = TestClient(create_app(pipeline))
    assert client.get("/metrics").status_code == 404


def test_reload_without_loader_is_404(admin):
    assert admin.post("/handlers/reload").status_code == 404


def test_reload_swaps_handlers(pipeline, valid_fields):
    calls = []
    app = create_app(
        pipeline,
        api_token=API_TOKEN,
        handler_loader=lambda: [RecordingHandler("fresh", calls), RecordingHandler("second", calls)],
    )
    client = TestClient(app, headers={API_TOKEN_HEADER_NAME: API_TOKEN})

    response = client.post("/handlers/reload")
    assert response.status_code == 200
    assert response.json()["handlers"] == ["fresh", "second"]

    client.post("/contact", data=valid_fields)
    assert calls == ["fresh", "second"]


def test_reload_config_error_keeps_handlers(pipeline):
    def broken_loader():
        raise ConfigError("[dispatch] unknown handlers: fax")

    app = create_app(pipeline, api_token=API_TOKEN, handler_loader=broken_loader)
    client = TestClient(app, headers={API_TOKEN_HEADER_NAME: API_TOKEN})

    response = client.post("/handlers/reload")
    assert response.status_code == 400
    assert "fax" in response.json()["detail"]
    assert pipeline.handler_set.names() == ["recorder"]
