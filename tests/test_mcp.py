"""Tests for the JSON-RPC tool dispatch endpoint."""

import json

import pytest
from fastapi.testclient import TestClient

from relay.app.main import create_app
from relay.app.services.tool_registry import text_result


def rpc(method, params=None, request_id=1):
    message = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def call_tool(name, arguments=None, request_id=1):
    return rpc("tools/call", {"name": name, "arguments": arguments or {}}, request_id)


@pytest.fixture
def app(make_settings):
    return create_app(make_settings(
        rate_limit_mcp_max_requests=3,
        rate_limit_tool_max_requests=2,
    ))


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


class TestProtocol:
    """Tests for JSON-RPC envelope handling."""

    def test_initialize(self, client):
        response = client.post("/mcp", json=rpc("initialize", {"protocolVersion": "2025-03-26"}))

        body = response.json()
        assert body["jsonrpc"] == "2.0"
        assert body["id"] == 1
        assert body["result"]["protocolVersion"] == "2025-03-26"
        assert body["result"]["serverInfo"]["name"] == "lexicon-relay"
        assert "tools" in body["result"]["capabilities"]

    def test_ping(self, client):
        assert client.post("/mcp", json=rpc("ping", request_id="abc")).json() == {
            "jsonrpc": "2.0",
            "id": "abc",
            "result": {},
        }

    def test_tools_list(self, client):
        tools = client.post("/mcp", json=rpc("tools/list")).json()["result"]["tools"]

        names = {tool["name"] for tool in tools}
        assert names == {
            "system_get_status",
            "system_health_check",
            "system_rate_limit_history",
            "system_reset_client_limits",
        }
        assert all("inputSchema" in tool for tool in tools)

    def test_parse_error(self, client):
        response = client.post("/mcp", content=b"{not json", headers={"Content-Type": "application/json"})

        assert response.json()["error"]["code"] == -32700
        assert response.json()["id"] is None

    def test_invalid_request(self, client):
        response = client.post("/mcp", json={"jsonrpc": "1.0", "id": 7, "method": "ping"})

        assert response.json()["error"]["code"] == -32600
        assert response.json()["id"] == 7

    def test_method_not_found(self, client):
        response = client.post("/mcp", json=rpc("resources/list"))
        assert response.json()["error"]["code"] == -32601

    def test_notification_gets_no_body(self, client):
        response = client.post("/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"})

        assert response.status_code == 202
        assert response.content == b""

    def test_missing_tool_name(self, client):
        response = client.post("/mcp", json=rpc("tools/call", {"arguments": {}}))
        assert response.json()["error"]["code"] == -32602

    def test_unknown_tool(self, client):
        result = client.post("/mcp", json=call_tool("missing_tool")).json()["result"]

        assert result["isError"] is True
        assert "Unknown tool: missing_tool" in result["content"][0]["text"]


class TestToolRateLimits:
    """Tests for the two admission layers of tool calls."""

    def test_http_and_tool_layers(self, client):
        """Tool calls pass the mcp limit first, then the per-tool limit."""
        results = [
            client.post("/mcp", json=call_tool("system_health_check", request_id=i))
            for i in range(3)
        ]

        assert all(r.status_code == 200 for r in results)
        assert results[0].headers["X-RateLimit-Limit"] == "3"
        first, second, third = (r.json()["result"] for r in results)
        assert "isError" not in first
        assert "isError" not in second
        assert third["isError"] is True
        assert third["content"][0]["text"] == (
            'Rate limit exceeded for tool "system_health_check". '
            "Please try again in 60 seconds."
        )

        rejected = client.post("/mcp", json=call_tool("system_health_check"))
        assert rejected.status_code == 429
        assert rejected.json()["rateLimitInfo"]["limit"] == 3

    def test_unknown_tool_is_not_counted(self, client, app):
        client.post("/mcp", json=call_tool("missing_tool"))

        assert app.state.rate_limiter.get_tool_history() == {}

    def test_tools_limited_independently(self, client):
        client.post("/mcp", json=call_tool("system_health_check"))
        client.post("/mcp", json=call_tool("system_health_check"))

        result = client.post("/mcp", json=call_tool("system_get_status")).json()["result"]
        assert "isError" not in result

    def test_handler_error_becomes_tool_error(self, client, app):
        async def broken(arguments, context):
            raise RuntimeError("backend down")

        app.state.tool_registry.register("broken", broken)

        result = client.post("/mcp", json=call_tool("broken")).json()["result"]

        assert result["isError"] is True
        assert "backend down" in result["content"][0]["text"]


class TestSystemTools:
    """Tests for the built-in system tools."""

    @pytest.fixture
    def app(self, make_settings):
        return create_app(make_settings(rate_limit_mcp_max_requests=100))

    def tool_payload(self, client, name, arguments=None):
        result = client.post("/mcp", json=call_tool(name, arguments)).json()["result"]
        return json.loads(result["content"][0]["text"])

    def test_get_status(self, client):
        payload = self.tool_payload(client, "system_get_status")

        assert payload["service"] == "lexicon-relay"
        assert payload["rate_limiter"]["initialized"] is True
        assert payload["rate_limiter"]["configuration"]["mcp"]["max_requests"] == 100

    def test_get_status_reports_app_settings(self, make_settings):
        """Status comes from the settings the app was built with."""
        app = create_app(make_settings(app_name="relay-eu-1"))

        with TestClient(app) as client:
            payload = self.tool_payload(client, "system_get_status")

        assert payload["service"] == "relay-eu-1"

    def test_get_status_without_rate_limits(self, client):
        payload = self.tool_payload(client, "system_get_status", {"includeRateLimits": False})
        assert "rate_limiter" not in payload

    def test_health_check(self, client):
        payload = self.tool_payload(client, "system_health_check")

        assert payload["status"] == "ok"
        assert payload["checks"]["rate_limit_storage"] == {"type": "memory", "reachable": True}

    def test_rate_limit_history(self, client):
        for _ in range(3):
            client.post("/mcp", json=call_tool("system_health_check"))

        payload = self.tool_payload(
            client, "system_rate_limit_history", {"toolName": "system_health_check", "limit": 2}
        )

        assert payload["capacity"] == 100
        calls = payload["tools"]["system_health_check"]
        assert len(calls) == 2
        assert calls[0]["clientId"] == "testclient"

    def test_reset_client_limits(self, client):
        client.post("/mcp", json=call_tool("system_health_check"))

        payload = self.tool_payload(
            client, "system_reset_client_limits", {"clientId": "testclient", "category": "tool"}
        )

        assert payload == {"clientId": "testclient", "category": "tool", "deleted": 2}

    def test_reset_requires_client_id(self, client):
        result = client.post("/mcp", json=call_tool("system_reset_client_limits")).json()["result"]
        assert result["isError"] is True


def test_text_result():
    assert text_result("done") == {"content": [{"type": "text", "text": "done"}]}
    assert text_result({"a": 1}, is_error=True)["isError"] is True
