#!/usr/bin/env python3
"""
MCP Server for Google Calendar with Streamable HTTP Transport

This server exposes the same Google Calendar tools as the stdio server using FastMCP with
streamable HTTP transport. Every tool forwards to CalendarTools.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Union

from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse

from calendar_config import load_settings, setup_logging
from calendar_errors import CalendarError
from calendar_tools import AUTH_CALLBACK_PAGE, ToolRequest, create_tools

settings = load_settings()
logger = logging.getLogger("calendar_mcp_server_streamable")

# Initialize FastMCP server
mcp = FastMCP("google-calendar-mcp")

calendar_tools = create_tools(settings)

EventTime = Union[str, Dict[str, str]]


def _run_tool(name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    # Drop unset optionals so the dispatcher sees them as omitted
    arguments = {key: value for key, value in arguments.items() if value is not None}
    try:
        return calendar_tools.dispatch(ToolRequest(name=name, arguments=arguments)).data
    except CalendarError as e:
        logger.error(f"Error in {name}: {e}")
        return {"error": e.message}


@mcp.tool()
def get_auth_url() -> Dict[str, Any]:
    """Get the Google OAuth URL used to authorize access to Google Calendar."""
    return _run_tool("get_auth_url", {})


@mcp.tool()
def get_auth_status() -> Dict[str, Any]:
    """Report whether the server currently holds a Google Calendar session."""
    return _run_tool("get_auth_status", {})


@mcp.tool()
def exchange_auth_code(code: str) -> Dict[str, Any]:
    """Complete Google Calendar authorization with the code returned on the redirect page.
    Args:
        code: The `code` query parameter from the redirect URL.
    """
    return _run_tool("exchange_auth_code", {"code": code})


@mcp.tool()
def list_events(
    timeMin: Optional[str] = None,
    timeMax: Optional[str] = None,
    maxResults: int = 10,
) -> Dict[str, Any]:
    """List Google Calendar events in chronological order.
    Args:
        timeMin: Lower bound in ISO 8601 format. Defaults to now.
        timeMax: Upper bound in ISO 8601 format.
        maxResults: Maximum number of events to return (1-50).
    """
    return _run_tool("list_events", {"timeMin": timeMin, "timeMax": timeMax, "maxResults": maxResults})


@mcp.tool()
def create_event(
    summary: str,
    start: EventTime,
    end: EventTime,
    description: Optional[str] = None,
    location: Optional[str] = None,
    attendees: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Create a new Google Calendar event.
    Args:
        summary: The title of the event.
        start: Start as an ISO 8601 date-time or {"dateTime", "timeZone"}.
        end: End as an ISO 8601 date-time or {"dateTime", "timeZone"}.
        description: Optional description for the event.
        location: Optional location.
        attendees: Optional list of email addresses for attendees.
    """
    return _run_tool(
        "create_event",
        {
            "summary": summary,
            "start": start,
            "end": end,
            "description": description,
            "location": location,
            "attendees": attendees,
        },
    )


@mcp.tool()
def update_event(
    eventId: str,
    summary: Optional[str] = None,
    start: Optional[EventTime] = None,
    end: Optional[EventTime] = None,
    description: Optional[str] = None,
    location: Optional[str] = None,
    attendees: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Update a Google Calendar event by event ID. Fields that are not given keep their current value.
    Args:
        eventId: The ID of the event to update.
        summary: (Optional) New summary/title.
        start: (Optional) New start.
        end: (Optional) New end.
        description: (Optional) New description.
        location: (Optional) New location.
        attendees: (Optional) New list of attendees.
    """
    return _run_tool(
        "update_event",
        {
            "eventId": eventId,
            "summary": summary,
            "start": start,
            "end": end,
            "description": description,
            "location": location,
            "attendees": attendees,
        },
    )


@mcp.tool()
def delete_event(eventId: str) -> Dict[str, Any]:
    """Delete a Google Calendar event by event ID.
    Args:
        eventId: The ID of the event to delete.
    """
    return _run_tool("delete_event", {"eventId": eventId})


@mcp.custom_route("/auth/callback", methods=["GET"])
async def auth_callback(request: Request):
    """Google redirects here when BASE_URL points at this server."""
    error = request.query_params.get("error", "")
    if error:
        return JSONResponse({"error": f"Authorization was not granted: {error}"}, status_code=400)

    code = request.query_params.get("code", "")
    if not code:
        return JSONResponse({"error": "Missing authorization code"}, status_code=400)

    try:
        await asyncio.to_thread(calendar_tools.token_manager.exchange_code, code)
    except CalendarError as e:
        logger.error(f"Authorization callback failed: {e}")
        return JSONResponse({"error": e.message}, status_code=e.status_code)
    return HTMLResponse(AUTH_CALLBACK_PAGE)


def run():
    setup_logging(settings)
    logger.info("Starting Google Calendar MCP Server with streamable HTTP transport...")
    try:
        mcp.run(
            transport="streamable-http",
            host=settings.mcp_http_host,
            port=settings.mcp_http_port,
            path=settings.mcp_http_path,
        )
    except KeyboardInterrupt:
        logger.info("Server shutting down...")
    except Exception as e:
        logger.error(f"Server error: {e}")
        raise


if __name__ == "__main__":
    run()
