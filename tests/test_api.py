import types

import pytest
from fastapi.testclient import TestClient

from mail_relay import api
from mail_relay.api import API_TOKEN_HEADER_NAME, create_app
from mail_relay.errors import EndpointQuotaExceeded, NoCapacityAvailable, ProviderUnavailable


API_TOKEN = "secret-token"

SEND_RESULT = {
    "ok": True,
    "message": "Email sent successfully",
    "data": {
        "to": "dest@example.com",
        "subject": "Hello",
        "from": "Mailer",
        "webapp_used": 2,
        "webapp_usage": 15,
        "webapp_limit": 1400,
        "timestamp": "2025-03-10T09:00:00Z",
    },
    "stats": {"total_sent": 15, "total_failed": 0, "available_apps": 3, "rate_limited_apps": 0},
}

BULK_RESULT = {
    "ok": True,
    "message": "Bulk email process completed",
    "summary": {"total": 2, "sent": 1, "failed": 0, "undistributed": 1, "success_rate": "50.0%"},
    "distribution": [{"webapp": 1, "emails_assigned": 1, "current_usage": 1399, "limit": 1400}],
    "results": [
        {"email": "a@example.com", "status": "sent", "webapp": 1, "timestamp": "2025-03-10T09:00:00Z"},
        {
            "email": "b@example.com",
            "status": "undistributed",
            "webapp": None,
            "error": "no endpoint capacity left",
            "timestamp": "2025-03-10T09:00:00Z",
        },
    ],
}

STATS_RESULT = {
    "ok": True,
    "stats": {
        "total_sent": 1,
        "total_failed": 0,
        "total_webapps": 1,
        "available_apps": 1,
        "rate_limited_apps": 0,
        "daily_limit": 1400,
        "uptime": 12,
        "last_reset": "2025-03-10T00:00:00",
        "reset_pending": False,
        "exhausted": [],
        "cache_status": {"urls_cached": 1, "last_fetch": None},
        "webapp_details": [
            {"webapp": 1, "usage": 1, "limit": 1400, "percentage": "0.1%", "remaining": 1399, "is_limited": False}
        ],
    },
}


class DummyService:
    def __init__(self):
        self.calls = []
        self.metrics = types.SimpleNamespace(generate_latest=lambda: b"metrics-data")
        self.raise_on = {}

    async def handle_command(self, cmd, payload):
        self.calls.append((cmd, payload))
        if cmd in self.raise_on:
            raise self.raise_on[cmd]
        if cmd == "sendEmail":
            return SEND_RESULT
        if cmd == "sendBulk":
            if len(payload["emails"]) > 2:
                return {"ok": False, "error": "Maximum 2 emails per batch request"}
            return BULK_RESULT
        if cmd == "stats":
            return STATS_RESULT
        if cmd == "refresh":
            return {"ok": True, "message": "WebApp URLs cache refreshed", "urls_loaded": 4, "timestamp": "t"}
        return {"ok": True, "message": "Rate limits and usage counters manually reset", "timestamp": "t"}


@pytest.fixture(autouse=True)
def reset_service():
    original = api.service
    original_token = getattr(api.app.state, "api_token", None)
    api.service = None
    api.app.state.api_token = None
    try:
        yield
    finally:
        api.service = original
        api.app.state.api_token = original_token


@pytest.fixture
def client_and_service():
    svc = DummyService()
    client = TestClient(create_app(svc, api_token=API_TOKEN))
    client.headers.update({API_TOKEN_HEADER_NAME: API_TOKEN})
    return client, svc


def test_returns_500_when_service_missing():
    create_app(DummyService(), api_token=API_TOKEN)
    api.service = None
    client = TestClient(api.app)
    response = client.get("/stats", headers={API_TOKEN_HEADER_NAME: API_TOKEN})
    assert response.status_code == 500
    assert response.json()["detail"] == "Service not initialized"


def test_rejects_missing_token():
    client = TestClient(create_app(DummyService(), api_token=API_TOKEN))
    response = client.get("/stats")
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or missing API token"


def test_health_and_index_need_no_token():
    client = TestClient(create_app(DummyService(), api_token=API_TOKEN))

    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["ok"] is True

    index = client.get("/")
    assert "GET /email" in index.json()["endpoints"]


def test_no_token_configured_allows_requests():
    client = TestClient(create_app(DummyService()))
    assert client.get("/stats").status_code == 200


def test_send_email(client_and_service):
    client, svc = client_and_service

    response = client.get("/email", params={"to": "dest@example.com", "subject": "Hello", "from": "Mailer"})

    assert response.status_code == 200
    body = response.json()
    assert body["data"]["from"] == "Mailer"
    assert body["data"]["webapp_used"] == 2
    assert svc.calls == [("sendEmail", {"to": "dest@example.com", "subject": "Hello", "from": "Mailer"})]


@pytest.mark.parametrize(
    "params,detail",
    [
        ({}, 'Parameter "to" (email address) is required'),
        ({"to": "not-an-email"}, "Invalid email format"),
    ],
)
def test_send_email_validates_recipient(client_and_service, params, detail):
    client, svc = client_and_service
    response = client.get("/email", params=params)
    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": detail, "code": "invalid_request"}
    assert svc.calls == []


def test_relay_errors_map_to_http_status(client_and_service):
    client, svc = client_and_service

    svc.raise_on["sendEmail"] = NoCapacityAvailable(
        "All WebApps have reached their daily limit or are near capacity. Try again tomorrow.",
        next_reset="2025-03-11T00:00:00",
        webapp_stats=[],
    )
    response = client.get("/email", params={"to": "dest@example.com"})
    assert response.status_code == 429
    assert response.json()["code"] == "no_capacity"
    assert response.json()["next_reset"] == "2025-03-11T00:00:00"
    assert response.json()["ok"] is False

    svc.raise_on["sendEmail"] = EndpointQuotaExceeded("WebApp #1 rate limit reached", available_apps=2)
    response = client.get("/email", params={"to": "dest@example.com"})
    assert response.status_code == 429
    assert response.json()["available_apps"] == 2

    svc.raise_on["stats"] = ProviderUnavailable("Failed to load WebApp URLs")
    response = client.get("/stats")
    assert response.status_code == 503
    assert response.json()["code"] == "provider_unavailable"


def test_bulk(client_and_service):
    client, svc = client_and_service

    response = client.post("/bulk", json={"emails": ["a@example.com", "b@example.com"], "from": "Mailer"})

    assert response.status_code == 200
    body = response.json()
    assert body["summary"]["undistributed"] == 1
    assert [item["status"] for item in body["results"]] == ["sent", "undistributed"]
    assert svc.calls[0] == (
        "sendBulk",
        {"emails": ["a@example.com", "b@example.com"], "subject": None, "from": "Mailer"},
    )


def test_bulk_rejections(client_and_service):
    client, _ = client_and_service

    too_many = client.post("/bulk", json={"emails": ["a@x.io", "b@x.io", "c@x.io"]})
    assert too_many.status_code == 400
    assert too_many.json()["ok"] is False
    assert too_many.json()["error"] == "Maximum 2 emails per batch request"

    malformed = client.post("/bulk", json={"subject": "no emails"})
    assert malformed.status_code == 422


def test_stats_reset_refresh(client_and_service):
    client, svc = client_and_service

    stats = client.get("/stats").json()
    assert stats["stats"]["webapp_details"][0]["remaining"] == 1399

    reset = client.post("/reset").json()
    assert reset["message"] == "Rate limits and usage counters manually reset"

    refresh = client.post("/refresh").json()
    assert refresh["urls_loaded"] == 4

    assert [cmd for cmd, _ in svc.calls] == ["stats", "reset", "refresh"]


def test_metrics_endpoint(client_and_service):
    client, _ = client_and_service
    response = client.get("/metrics")
    assert response.status_code == 200
    assert response.content == b"metrics-data"
