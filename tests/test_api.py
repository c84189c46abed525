import json
from unittest.mock import AsyncMock, patch

from tests.conftest import FakeAPIError


def _session(client) -> dict:
    response = client.get("/api/insights/count")
    return {"X-Session-ID": response.headers["X-Session-ID"]}


def test_health(api_client):
    response = api_client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["message"] == "Server is running"
    assert "environment" in body


def test_health_checks_do_not_register_sessions(api_client):
    registry = api_client.app.state.session_registry

    for _ in range(5):
        response = api_client.get("/api/health")
        assert "X-Session-ID" not in response.headers

    assert len(registry) == 0
    api_client.get("/api/insights/count")
    assert len(registry) == 1


def test_session_id_is_issued_and_reused(api_client):
    first = api_client.get("/api/insights/count")
    session_id = first.headers["X-Session-ID"]
    assert len(session_id) == 32
    assert first.json()["sessionId"] == session_id[:8] + "..."

    again = api_client.get("/api/insights/count", headers={"X-Session-ID": session_id})
    assert again.headers["X-Session-ID"] == session_id

    unknown = api_client.get("/api/insights/count", headers={"X-Session-ID": "not-issued"})
    assert unknown.headers["X-Session-ID"] not in ("not-issued", session_id)


# ---------------------------------------------------------------------------
# Agent routes
# ---------------------------------------------------------------------------

def test_agent_routes_validate_message(api_client, claude):
    for path in ("/api/agents/intake", "/api/agents/insights", "/api/agents/techspec"):
        for body in ({}, {"message": ""}, {"message": "   "}, {"message": 42}):
            response = api_client.post(path, json=body)
            assert response.status_code == 400, (path, body)
            assert response.json()["error"] == "Validation Error"

    response = api_client.post("/api/agents/intake", json={"message": "hi", "conversationHistory": "nope"})
    assert response.status_code == 400
    assert "conversationHistory" in response.json()["message"]

    for structured in ("draft", ["not", "an", "object"], 7):
        response = api_client.post("/api/agents/intake", json={"message": "hi", "structuredRequest": structured})
        assert response.status_code == 400
        assert response.json() == {
            "error": "Validation Error",
            "message": "structuredRequest must be an object if provided",
        }
    assert claude.calls == []


def test_intake_route(api_client, claude):
    claude.queue("Got it! Acme Corp is one of our Enterprise customers.", "{}")

    response = api_client.post("/api/agents/intake", json={
        "message": "Acme Corp wants bulk export",
        "conversationHistory": [],
    })

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["response"] == "Got it! Acme Corp is one of our Enterprise customers."
    assert body["usage"] == {"inputTokens": 120, "outputTokens": 40}
    assert body["contextFound"]["customer"]["companyName"] == "Acme Corp"
    assert body["structuredRequest"]["customer"]["companyName"] == "Acme Corp"
    assert body["validation"]["isValid"] is False
    assert body["sessionId"].endswith("...")


def test_agent_failure_is_500(api_client, claude):
    claude.queue(FakeAPIError(401, "invalid x-api-key"))

    response = api_client.post("/api/agents/techspec", json={"message": "How would we build it?"})

    assert response.status_code == 500
    assert response.json() == {"error": "Agent Error", "message": "invalid x-api-key"}


def test_agent_failure_without_message_uses_fallback(api_client):
    with patch("insightbridge.api.routes.run_intake_turn", AsyncMock(side_effect=RuntimeError())) as turn:
        response = api_client.post("/api/agents/intake", json={"message": "Acme Corp wants export"})

    assert response.status_code == 500
    assert response.json()["message"] == "Failed to process request with intake agent"
    turn.assert_awaited_once()


def test_insights_route_triggers_and_lists_specs(api_client, claude):
    headers = _session(api_client)
    payload = {"title": "Bulk CSV Export", "description": "Export 200+ reports"}
    claude.queue(
        "Sending this to Engineering.\n[TRIGGER_TECH_ANALYSIS]\n" + json.dumps(payload),
        "**1. Feature Understanding** ...",
    )

    response = api_client.post(
        "/api/agents/insights", json={"message": "Analyze export"}, headers=headers,
    )

    body = response.json()
    assert body["techAnalysisTriggered"] is True
    assert body["response"] == "Sending this to Engineering."
    assert body["techAnalysisResult"]["featureTitle"] == "Bulk CSV Export"

    specs = api_client.get("/api/agents/techspec/specs", headers=headers).json()
    assert specs["count"] == 1
    assert specs["specs"][0]["specId"] == body["techAnalysisResult"]["specId"]

    # another session sees nothing
    assert api_client.get("/api/agents/techspec/specs").json()["count"] == 0


def test_techspec_stream(api_client, claude):
    claude.queue("Extend the Export API")

    with api_client.stream("POST", "/api/agents/techspec/stream", json={"message": "Outline it"}) as response:
        assert response.status_code == 200
        text = "".join(response.iter_text())

    assert "event: start" in text
    assert "event: delta" in text
    assert "event: done" in text
    assert "componentsCount" in text
    assert text.index("event: start") < text.index("event: done")


def test_techspec_stream_reports_errors_in_band(api_client, claude):
    claude.queue(FakeAPIError(400, "bad request"))

    with api_client.stream("POST", "/api/agents/techspec/stream", json={"message": "Outline it"}) as response:
        text = "".join(response.iter_text())

    assert "event: error" in text
    assert "event: done" not in text


# ---------------------------------------------------------------------------
# Insight repository
# ---------------------------------------------------------------------------

def test_submit_requires_customer_and_request(api_client, insight_factory):
    assert api_client.post("/api/insights/submit", json={}).status_code == 400

    partial = insight_factory()
    del partial["request"]
    response = api_client.post("/api/insights/submit", json={"insight": partial})
    assert response.status_code == 400
    assert response.json()["message"] == "Insight must include customer and request data"

    for insight in ("just text", [1, 2], {"customer": "Acme Corp", "request": {"title": "Export"}}):
        response = api_client.post("/api/insights/submit", json={"insight": insight})
        assert response.status_code == 400, insight
        assert response.json()["error"] == "Validation Error"


def test_repository_lifecycle(api_client, insight_factory):
    headers = _session(api_client)

    submitted = api_client.post(
        "/api/insights/submit", json={"insight": insight_factory(meta={"completeness": 80})}, headers=headers,
    ).json()
    assert submitted["success"] is True
    assert submitted["insight"]["insightId"].startswith("insight-")

    api_client.post(
        "/api/insights/submit",
        json={"insight": insight_factory("TechStart Inc", "Startup", 12000, meta={"completeness": 40})},
        headers=headers,
    )

    listed = api_client.get("/api/insights", headers=headers).json()
    assert listed["count"] == 2

    startups = api_client.get("/api/insights", params={"tier": "Startup"}, headers=headers).json()
    assert [i["customer"]["companyName"] for i in startups["insights"]] == ["TechStart Inc"]

    complete = api_client.get("/api/insights", params={"minCompleteness": 50}, headers=headers).json()
    assert complete["count"] == 1

    assert api_client.get("/api/insights/count", headers=headers).json()["count"] == 2

    stats = api_client.get("/api/insights/stats", headers=headers).json()["stats"]
    assert stats["totalARR"] == 162000
    assert stats["byTier"] == {"Enterprise": 1, "Startup": 1}

    cleared = api_client.delete("/api/insights/clear", headers=headers).json()
    assert cleared["cleared"] == 2
    assert api_client.get("/api/insights/count", headers=headers).json()["count"] == 0


def test_reset_clears_insights_and_specs(api_client, claude, insight_factory):
    headers = _session(api_client)
    api_client.post("/api/insights/submit", json={"insight": insight_factory()}, headers=headers)
    claude.queue(
        "On it.\n[TRIGGER_TECH_ANALYSIS]\n" + json.dumps({"title": "Bulk export"}),
        "Approach A",
    )
    api_client.post("/api/agents/insights", json={"message": "Analyze export"}, headers=headers)

    body = api_client.post("/api/insights/reset", headers=headers).json()

    assert body["cleared"] == {"insights": 1, "specs": 1}
    assert api_client.get("/api/insights/count", headers=headers).json()["count"] == 0
    assert api_client.get("/api/agents/techspec/specs", headers=headers).json()["count"] == 0
