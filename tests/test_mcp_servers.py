"""Tests for the stdio and streamable MCP faces."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from oauthlib.oauth2.rfc6749.errors import InvalidGrantError
from starlette.testclient import TestClient

import mcp_server_streamable
from calendar_mcp_server import call_tool, create_server, list_tool_definitions


def _google_credentials():
    expiry = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1)
    return Credentials(token="ya29.token", refresh_token="1//refresh", expiry=expiry)


def test_tool_definitions_expose_schemas():
    tools = {tool.name: tool for tool in list_tool_definitions()}
    assert set(tools) == {
        "get_auth_url",
        "get_auth_status",
        "exchange_auth_code",
        "list_events",
        "create_event",
        "update_event",
        "delete_event",
    }
    assert tools["delete_event"].inputSchema["required"] == ["eventId"]


def test_create_server(tools):
    assert create_server(tools).name == "google-calendar-mcp"


class TestStdioCallTool:
    def test_not_authenticated_returns_guidance(self, tools):
        content = asyncio.run(call_tool(tools, "list_events", {}))
        assert len(content) == 1
        assert content[0].type == "text"
        assert "get_auth_url" in content[0].text

    def test_list_events_text(self, tools, authenticated):
        asyncio.run(
            call_tool(
                tools,
                "create_event",
                {"summary": "Planning", "start": "2024-01-01T10:00:00Z", "end": "2024-01-01T11:00:00Z"},
            )
        )
        content = asyncio.run(
            call_tool(tools, "list_events", {"timeMin": "2024-01-01T00:00:00Z", "timeMax": "2024-01-02T00:00:00Z"})
        )
        assert "Events found (1)" in content[0].text
        assert "Planning" in content[0].text

    def test_no_arguments(self, tools):
        content = asyncio.run(call_tool(tools, "get_auth_url", None))
        assert "accounts.google.com" in content[0].text

    def test_unknown_tool_is_an_error(self, tools):
        with pytest.raises(RuntimeError, match="Unknown tool: nope"):
            asyncio.run(call_tool(tools, "nope", {}))

    def test_not_found_is_an_error(self, tools, authenticated):
        with pytest.raises(RuntimeError, match="Event not found: missing"):
            asyncio.run(call_tool(tools, "delete_event", {"eventId": "missing"}))

    def test_exchange_code_then_list_events(self, tools, store):
        with patch("calendar_auth._exchange_code_for_tokens", return_value=_google_credentials()):
            content = asyncio.run(call_tool(tools, "exchange_auth_code", {"code": "4/abc"}))
        assert "authorization completed" in content[0].text
        assert store.get().access_token == "ya29.token"

        content = asyncio.run(
            call_tool(tools, "list_events", {"timeMin": "2024-01-01T00:00:00Z", "timeMax": "2024-01-02T00:00:00Z"})
        )
        assert "No events found" in content[0].text

    def test_bad_code_is_an_error(self, tools, store):
        with patch("calendar_auth._exchange_code_for_tokens", side_effect=InvalidGrantError(description="Bad Request")):
            with pytest.raises(RuntimeError, match="Authorization code exchange failed"):
                asyncio.run(call_tool(tools, "exchange_auth_code", {"code": "4/expired"}))
        assert store.get() is None

    def test_revoked_session_returns_guidance(self, tools, authenticated, fake_events):
        fake_events.fail_with = RefreshError("invalid_grant")
        content = asyncio.run(call_tool(tools, "list_events", {}))
        assert "get_auth_url" in content[0].text


class TestStreamableTools:
    @pytest.fixture(autouse=True)
    def use_fake_tools(self, tools, monkeypatch):
        monkeypatch.setattr(mcp_server_streamable, "calendar_tools", tools)

    def test_errors_are_returned_as_payload(self):
        assert mcp_server_streamable._run_tool("list_events", {}) == {
            "error": "Not authenticated. Use get_auth_url to authorize Google Calendar access."
        }

    def test_unset_optionals_are_dropped(self, authenticated, fake_events):
        result = mcp_server_streamable._run_tool(
            "create_event",
            {
                "summary": "S",
                "start": "2024-01-01T10:00:00Z",
                "end": "2024-01-01T11:00:00Z",
                "description": None,
                "location": None,
                "attendees": None,
            },
        )
        assert result["event"]["summary"] == "S"
        assert set(fake_events.calls[0][1]["body"]) == {"summary", "start", "end"}

    def test_exchange_code_then_list_events(self, fake_events):
        with patch("calendar_auth._exchange_code_for_tokens", return_value=_google_credentials()):
            assert mcp_server_streamable._run_tool("exchange_auth_code", {"code": "4/abc"})["authenticated"] is True
        result = mcp_server_streamable._run_tool(
            "list_events", {"timeMin": "2024-01-01T00:00:00Z", "timeMax": "2024-01-02T00:00:00Z"}
        )
        assert result["events"] == []
        assert fake_events.methods() == ["list"]

    def test_session_rejected_by_google(self, authenticated, fake_events):
        fake_events.fail_with = RefreshError("invalid_grant")
        assert "get_auth_url" in mcp_server_streamable._run_tool("list_events", {})["error"]


class TestStreamableAuthCallback:
    @pytest.fixture(autouse=True)
    def use_fake_tools(self, tools, monkeypatch):
        monkeypatch.setattr(mcp_server_streamable, "calendar_tools", tools)

    @pytest.fixture
    def client(self):
        return TestClient(mcp_server_streamable.mcp.http_app())

    def test_callback_route_is_served(self):
        paths = [route.path for route in mcp_server_streamable.mcp.http_app().routes]
        assert "/auth/callback" in paths

    def test_callback_logs_in(self, client, store, fake_events):
        with patch("calendar_auth._exchange_code_for_tokens", return_value=_google_credentials()):
            response = client.get("/auth/callback", params={"code": "4/abc"})

        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        assert store.get().access_token == "ya29.token"

        result = mcp_server_streamable._run_tool(
            "list_events", {"timeMin": "2024-01-01T00:00:00Z", "timeMax": "2024-01-02T00:00:00Z"}
        )
        assert result["events"] == []
        assert fake_events.methods() == ["list"]

    def test_callback_with_bad_code(self, client, store):
        with patch("calendar_auth._exchange_code_for_tokens", side_effect=InvalidGrantError(description="Bad Request")):
            response = client.get("/auth/callback", params={"code": "4/expired"})
        assert response.status_code == 400
        assert "error" in response.json()
        assert store.get() is None

    def test_callback_without_code(self, client):
        response = client.get("/auth/callback")
        assert response.status_code == 400
        assert response.json() == {"error": "Missing authorization code"}

    def test_callback_when_consent_denied(self, client):
        response = client.get("/auth/callback", params={"error": "access_denied"})
        assert response.status_code == 400
        assert "access_denied" in response.json()["error"]
