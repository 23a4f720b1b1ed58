"""Tests for API routes."""

from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from bizagent.config import Config, config

BUSINESS_ID = "biz-1"


def test_root_endpoint(api_client):
    """Root endpoint returns API info and the command cheat sheet."""
    response = api_client.get("/")
    assert response.status_code == 200

    data = response.json()
    assert "message" in data
    assert data["endpoints"]["agent_chat"] == "/agent/chat"
    assert "service:" in data["commands"]


def test_chat_service_command(api_client, business):
    response = api_client.post(
        "/agent/chat",
        json={"businessId": BUSINESS_ID, "message": "service: Стрижка, 500, 45", "sessionId": "web"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert "Стрижка" in data["message"]
    assert data["action"]["status"] == "completed"
    assert set(data["ai"]) == {"hasKey", "indicator", "usedAi", "reason"}
    assert data["ai"]["usedAi"] is False


def test_chat_missing_fields(api_client, business):
    assert api_client.post("/agent/chat", json={"message": "привіт"}).status_code == 400
    assert api_client.post("/agent/chat", json={"businessId": BUSINESS_ID}).status_code == 400
    assert api_client.post("/agent/chat", json={"businessId": BUSINESS_ID, "message": "   "}).status_code == 400


def test_chat_unknown_business(api_client, business):
    response = api_client.post("/agent/chat", json={"businessId": "nope", "message": "note: тест"})
    assert response.status_code == 404


def test_chat_history_round_trip(api_client, business):
    api_client.post("/agent/chat", json={"businessId": BUSINESS_ID, "message": "note: купити фарбу", "sessionId": "web"})

    response = api_client.get("/agent/chat", params={"businessId": BUSINESS_ID, "sessionId": "web"})

    assert response.status_code == 200
    data = response.json()
    assert [m["role"] for m in data["messages"]] == ["user", "assistant"]
    assert data["messages"][0]["message"] == "note: купити фарбу"
    assert data["messages"][1]["metadata"]["decision_action"] == "create_note"
    assert data["ai"]["hasKey"] is True

    other = api_client.get("/agent/chat", params={"businessId": BUSINESS_ID}).json()
    assert other["messages"] == []


def test_chat_history_requires_business(api_client, business):
    assert api_client.get("/agent/chat").status_code == 400
    assert api_client.get("/agent/chat", params={"businessId": "nope"}).status_code == 404


def test_database_outage_is_503(api_client, business):
    outage = OperationalError("SELECT 1", {}, Exception("could not connect to server"))
    with patch("bizagent.routers.agent.process_message", side_effect=outage):
        response = api_client.post("/agent/chat", json={"businessId": BUSINESS_ID, "message": "привіт"})

    assert response.status_code == 503
    assert response.json()["detail"] == "Service temporarily unavailable"


def test_unexpected_error_is_500_without_details(api_client, business):
    with patch("bizagent.routers.agent.process_message", side_effect=RuntimeError("secret internals")):
        response = api_client.post("/agent/chat", json={"businessId": BUSINESS_ID, "message": "привіт"})

    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to process chat message"
    assert "secret" not in response.text


def test_api_key_required_when_configured(api_client, business, monkeypatch):
    monkeypatch.setattr(Config, "API_KEY", "s3cret")
    monkeypatch.setattr(config, "API_KEY", "s3cret")
    body = {"businessId": BUSINESS_ID, "message": "note: тест"}

    assert api_client.post("/agent/chat", json=body).status_code == 403
    assert api_client.post("/agent/chat", json=body, headers={"X-API-Key": "wrong"}).status_code == 403
    assert api_client.post("/agent/chat", json=body, headers={"X-API-Key": "s3cret"}).status_code == 200
    # health stays open
    assert api_client.get("/health").status_code == 200
