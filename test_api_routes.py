"""
HTTP and WebSocket surface: agent lifecycle routes, task submission, AI
convenience routes, health checks and the realtime socket.
"""
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from agentcore.errors import UpstreamUnavailable
from agentcore.main import create_app
from conftest import FakeModelClient, bearer, build_services

ADMIN = bearer("admin-token")
CUSTOMER = bearer("customer-token")

PRICING = {
    "basePrice": 1500,
    "recommendedPrice": 1800,
    "priceRange": {"min": 1500, "max": 2200},
    "rationale": "Comparable handmade pieces sell in this band.",
    "factors": [{"name": "materials", "impact": "raises", "description": "Natural dyes"}],
    "strategies": [{"name": "premium", "description": "Lead with provenance", "expectedImpact": "higher margin"}],
}


def start(client, agent_type, config=None):
    body = {"config": config} if config is not None else None
    resp = client.post(f"/api/agents/{agent_type}/start", headers=ADMIN, json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


def submit(client, agent_type, body, headers=CUSTOMER):
    return client.post(f"/api/agents/{agent_type}/task", headers=headers, json=body)


# ─────────────────────────────────────────────
# Agents
# ─────────────────────────────────────────────

def test_list_agents_returns_every_type(client):
    resp = client.get("/api/agents", headers=CUSTOMER)
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert set(body["data"]) == {
        "productRecommendation", "customerSupport", "artisanAssistant", "orderProcessing", "contentGeneration",
    }


def test_task_requires_running_agent_then_succeeds(client, model_client):
    resp = submit(client, "contentGeneration", {"query": "write a haiku about looms"})
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "AgentNotRunning"
    assert model_client.call_count == 0

    start(client, "contentGeneration")
    resp = submit(client, "contentGeneration", {"query": "write a haiku about looms"})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["result"] == "R1"
    assert data["cached"] is False
    assert data["agentType"] == "contentGeneration"


def test_start_twice_is_conflict(client):
    start(client, "customerSupport")
    resp = client.post("/api/agents/customerSupport/start", headers=ADMIN)
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "AlreadyRunning"


def test_start_with_invalid_config_is_validation_failed(client):
    resp = client.post("/api/agents/customerSupport/start", headers=ADMIN, json={"config": {"maxTokens": 0}})
    assert resp.status_code == 400
    assert resp.json()["error"]["details"][0]["path"] == "maxTokens"


def test_status_reports_stats_and_config(client):
    start(client, "productRecommendation", {"temperature": 0.1})
    submit(client, "productRecommendation", {"query": "show pottery under 2000"})
    submit(client, "productRecommendation", {"query": "show pottery under 2000"})

    resp = client.get("/api/agents/productRecommendation/status", headers=CUSTOMER)
    data = resp.json()["data"]
    assert data["status"] == "running"
    assert data["config"]["temperature"] == 0.1
    assert data["stats"]["totalTasks"] == 2
    assert data["stats"]["cacheHits"] == 1
    assert data["stats"]["cacheMisses"] == 1
    assert data["cachedEntries"] == 1


def test_stop_then_status_is_stopped(client):
    start(client, "orderProcessing")
    resp = client.post("/api/agents/orderProcessing/stop", headers=ADMIN)
    assert resp.status_code == 200
    status = client.get("/api/agents/orderProcessing/status", headers=CUSTOMER).json()["data"]
    assert status["status"] == "stopped"


def test_admin_cache_purge_forces_a_miss(client, services, model_client):
    seen = []
    services.bus.subscribe(seen.append)
    start(client, "productRecommendation")
    body = {"query": "show pottery under 2000"}
    submit(client, "productRecommendation", body)

    resp = client.delete("/api/agents/productRecommendation/cache", headers=ADMIN)
    assert resp.status_code == 200
    assert resp.json()["data"]["entriesRemoved"] == 1

    again = submit(client, "productRecommendation", body).json()["data"]
    assert again["cached"] is False
    assert model_client.call_count == 2
    cleared = [e for e in seen if e.kind == "agent:cache-cleared"]
    assert len(cleared) == 1
    assert cleared[0].agent_type == "productRecommendation"


def test_named_operation_with_input(client, services):
    services.model_client.structured["generatePricingRecommendation"] = PRICING
    start(client, "artisanAssistant")
    resp = submit(client, "artisanAssistant", {
        "parameters": {
            "operation": "suggestPricing",
            "input": {
                "productData": {
                    "title": "Kantha stole",
                    "description": "Hand-stitched silk stole",
                    "materials": ["silk"],
                    "productionTime": 14,
                    "craftingComplexity": "high",
                },
                "marketContext": {"category": "Textiles", "region": "West Bengal"},
            },
        },
    })
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["operation"] == "suggestPricing"
    assert data["result"]["recommendedPrice"] == 1800


def test_unknown_operation_is_validation_failed(client):
    start(client, "artisanAssistant")
    resp = submit(client, "artisanAssistant", {"parameters": {"operation": "launchRocket", "input": {}}})
    assert resp.status_code == 400
    assert "suggestPricing" in resp.json()["error"]["details"]["allowed"]


def test_operations_catalogue(client):
    resp = client.get("/api/agents/orderProcessing/operations", headers=CUSTOMER)
    data = resp.json()["data"]
    names = {op["name"] for op in data["operations"]}
    assert {"query", "processOrder", "trackShipment", "handleReturn", "updateInventory", "analyzePerformance"} <= names


def test_upstream_failure_maps_to_503(services, model_client):
    model_client.error = UpstreamUnavailable("Model provider unreachable")
    with TestClient(create_app(services)) as c:
        start(c, "productRecommendation")
        resp = submit(c, "productRecommendation", {"query": "anything"})
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "UpstreamUnavailable"


def test_unknown_route_is_not_found(client):
    resp = client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NotFound"


# ─────────────────────────────────────────────
# AI convenience routes
# ─────────────────────────────────────────────

def test_chat_routes_to_agent_and_emits_ai_events(client, services, model_client):
    seen = []
    services.bus.subscribe(seen.append)
    start(client, "customerSupport")

    resp = client.post("/api/ai/chat", headers=CUSTOMER, json={
        "message": "where is my order?",
        "context": {"type": "support", "data": {"orderId": "o-1"}},
    })

    assert resp.status_code == 200
    assert resp.json()["data"]["agentType"] == "customerSupport"
    kinds = [e.kind for e in seen if e.kind.startswith("ai:")]
    assert kinds == ["ai:thinking", "ai:response"]
    assert all(e.user_id == "user-1" for e in seen if e.kind.startswith("ai:"))
    sent = model_client.calls[0]["messages"][0].text
    assert "where is my order?" in sent and "o-1" in sent


def test_chat_failure_emits_ai_error(client, services):
    seen = []
    services.bus.subscribe(seen.append)
    resp = client.post("/api/ai/chat", headers=CUSTOMER, json={"message": "hi", "context": {"type": "order"}})
    assert resp.status_code == 409
    assert [e.kind for e in seen if e.kind.startswith("ai:")] == ["ai:thinking", "ai:error"]


def test_chat_rejects_unknown_context_type(client):
    resp = client.post("/api/ai/chat", headers=CUSTOMER, json={"message": "hi", "context": {"type": "weather"}})
    assert resp.status_code == 400


def test_generate_maps_to_content_generation(client, services):
    services.model_client.structured["generateDescription"] = "not json"
    start(client, "contentGeneration")
    resp = client.post("/api/ai/generate", headers=CUSTOMER, json={
        "type": "product_description",
        "input": {"title": "Brass lamp"},
        "parameters": {"age": "25-40"},
    })
    assert resp.status_code == 502
    assert resp.json()["error"]["code"] == "MalformedJson"
    call = services.model_client.calls[0]
    assert call["schema"] == "generateDescription"
    assert "Brass lamp" in call["messages"][0].text


def test_analyze_spreads_data_for_pricing(client, services):
    services.model_client.structured["generatePricingRecommendation"] = PRICING
    start(client, "artisanAssistant")
    resp = client.post("/api/ai/analyze", headers=CUSTOMER, json={
        "type": "market_analysis",
        "data": {
            "productData": {
                "title": "Kantha stole",
                "description": "Hand-stitched silk stole",
                "materials": ["silk"],
                "productionTime": 14,
                "craftingComplexity": "high",
            },
            "marketContext": {"category": "Textiles", "region": "West Bengal"},
        },
        "timeframe": {"start": "2024-01-01T00:00:00Z", "end": "2024-03-31T00:00:00Z"},
    })
    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["operation"] == "suggestPricing"


# ─────────────────────────────────────────────
# Health
# ─────────────────────────────────────────────

def test_health_reports_system_metrics(client):
    data = client.get("/api/health").json()["data"]
    assert data["status"] == "healthy"
    assert data["memory"]["total"] > 0
    assert "loadAverage" in data["cpu"]


def test_agents_health_degraded_on_error(client, services):
    start(client, "orderProcessing")
    services.registry.mark_error(services.registry.instance("orderProcessing"), "boom")
    data = client.get("/api/health/agents").json()["data"]
    assert data["status"] == "degraded"
    assert data["agents"]["orderProcessing"]["status"] == "error"


def test_database_health_uses_probe(client):
    resp = client.get("/api/health/database")
    assert resp.status_code == 200
    assert resp.json()["data"]["database"]["connected"] is True


def test_database_health_unhealthy_is_503():
    async def broken_probe():
        raise OSError("disk gone")

    services = build_services(FakeModelClient(), store_probe=broken_probe)
    with TestClient(create_app(services)) as c:
        resp = c.get("/api/health/database")
    assert resp.status_code == 503
    assert resp.json()["data"]["status"] == "unhealthy"


def test_ai_health_probes_model(client, model_client):
    data = client.get("/api/health/ai").json()["data"]
    assert data["ai"]["connected"] is True
    assert data["ai"]["model"] == "fake-model"
    assert model_client.call_count == 1


def test_ai_health_unhealthy_when_provider_down(services, model_client):
    model_client.error = UpstreamUnavailable("down")
    with TestClient(create_app(services)) as c:
        resp = c.get("/api/health/ai")
    assert resp.status_code == 503
    assert resp.json()["data"]["ai"]["lastError"] == "down"


def test_health_all_combines_checks(client):
    data = client.get("/api/health/all").json()["data"]
    assert data["status"] == "healthy"
    assert set(data) >= {"system", "agents", "database", "ai"}


# ─────────────────────────────────────────────
# Realtime socket
# ─────────────────────────────────────────────

def test_websocket_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/ws?token=garbage") as ws:
            ws.receive_json()
    assert exc_info.value.code == 4401


def test_websocket_token_in_first_frame(client, jwt_auth):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"token": jwt_auth.issue("user-1")})
        ws.send_json({"event": "subscribe", "data": "system"})
        frame = ws.receive_json()
        assert frame["event"] == "subscribed"
        assert frame["data"]["channel"] == "system"
        assert "timestamp" in frame["data"]


def test_websocket_binary_frame_closes_session(client, services, jwt_auth):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect(f"/ws?token={jwt_auth.issue('user-1')}") as ws:
            ws.send_bytes(b"\x00\x01")
            ws.receive_json()
    assert exc_info.value.code == 1003
    assert services.gateway.active_connections == 0


def test_websocket_receives_agent_events(client, jwt_auth):
    with client.websocket_connect(f"/ws?token={jwt_auth.issue('user-1')}") as ws:
        ws.send_json({"event": "subscribe-agent", "data": {"agentType": "productRecommendation"}})
        assert ws.receive_json()["event"] == "subscribed"
        start(client, "productRecommendation")
        frame = ws.receive_json()
    assert frame["event"] == "agent:started"
    assert frame["data"]["agentType"] == "productRecommendation"
    assert "timestamp" in frame["data"]


def test_realtime_stats_is_admin_only(client):
    assert client.get("/api/realtime/stats", headers=CUSTOMER).status_code == 403
    data = client.get("/api/realtime/stats", headers=ADMIN).json()["data"]
    assert data["activeConnections"] == 0
