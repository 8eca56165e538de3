"""
Google Calendar tools shared by every server face.

The MCP stdio server, the streamable MCP server and the HTTP service all
translate their wire format into a ToolRequest and hand it to CalendarTools;
the business logic lives only here.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Dict, List, Optional

from calendar_agent import CalendarAgent, EventFields, merge_event_fields, normalize_event_time, to_event
from calendar_auth import CredentialStore, TokenManager
from calendar_config import Settings, load_settings
from calendar_errors import UnknownToolError, ValidationError

logger = logging.getLogger("calendar_tools")

DEFAULT_MAX_RESULTS = 10
MIN_RESULTS = 1
MAX_RESULTS = 50

AUTH_INSTRUCTIONS = (
    "1. Open the link above\n"
    "2. Sign in to your Google account\n"
    "3. Allow access to Google Calendar\n"
    "4. You will be redirected back and the server stores the session\n"
    "5. If the redirect page is not served by this server, copy the `code` parameter from the\n"
    "   address bar and pass it to the exchange_auth_code tool"
)

AUTH_CALLBACK_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Google Calendar MCP</title></head>
<body>
<h1>Google Calendar connected</h1>
<p>Authorization completed. You can close this window and go back to your assistant.</p>
</body>
</html>
"""

_EVENT_TIME_SCHEMA = {
    "oneOf": [
        {"type": "string", "description": "ISO 8601 date-time, e.g. 2024-08-01T10:00:00-03:00"},
        {
            "type": "object",
            "properties": {
                "dateTime": {"type": "string"},
                "timeZone": {"type": "string"},
            },
            "required": ["dateTime"],
        },
    ]
}

TOOLS: List[Dict[str, Any]] = [
    {
        "name": "get_auth_url",
        "description": "Get the Google OAuth URL used to authorize access to Google Calendar.",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "get_auth_status",
        "description": "Report whether the server currently holds a Google Calendar session.",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "exchange_auth_code",
        "description": "Complete Google Calendar authorization with the code returned on the redirect page.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "code": {"type": "string", "description": "Authorization code from the redirect URL"},
            },
            "required": ["code"],
        },
    },
    {
        "name": "list_events",
        "description": "List Google Calendar events in chronological order.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "timeMin": {"type": "string", "description": "Lower bound (ISO 8601). Defaults to now."},
                "timeMax": {"type": "string", "description": "Upper bound (ISO 8601)."},
                "maxResults": {
                    "type": "integer",
                    "description": "Maximum number of events to return.",
                    "default": DEFAULT_MAX_RESULTS,
                    "minimum": MIN_RESULTS,
                    "maximum": MAX_RESULTS,
                },
            },
        },
    },
    {
        "name": "create_event",
        "description": "Create a new Google Calendar event.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "summary": {"type": "string", "description": "Event title"},
                "description": {"type": "string", "description": "Event description"},
                "location": {"type": "string", "description": "Event location"},
                "start": _EVENT_TIME_SCHEMA,
                "end": _EVENT_TIME_SCHEMA,
                "attendees": {"type": "array", "items": {"type": "string"}, "description": "Attendee emails"},
            },
            "required": ["summary", "start", "end"],
        },
    },
    {
        "name": "update_event",
        "description": "Update a Google Calendar event. Fields that are not given keep their current value.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "eventId": {"type": "string", "description": "ID of the event to update"},
                "summary": {"type": "string"},
                "description": {"type": "string"},
                "location": {"type": "string"},
                "start": _EVENT_TIME_SCHEMA,
                "end": _EVENT_TIME_SCHEMA,
                "attendees": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["eventId"],
        },
    },
    {
        "name": "delete_event",
        "description": "Delete a Google Calendar event by ID.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "eventId": {"type": "string", "description": "ID of the event to delete"},
            },
            "required": ["eventId"],
        },
    },
]

TOOL_ALIASES = {
    "list_calendar_events": "list_events",
    "create_calendar_event": "create_event",
    "update_calendar_event": "update_event",
    "delete_calendar_event": "delete_event",
}


@dataclass
class ToolRequest:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResult:
    text: str
    data: Dict[str, Any]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _arg(arguments: Dict[str, Any], *names: str) -> Any:
    for name in names:
        if arguments.get(name) is not None:
            return arguments[name]
    return None


def _required_text(arguments: Dict[str, Any], name: str) -> str:
    value = arguments.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Missing required argument '{name}'")
    return value


def _optional_text(arguments: Dict[str, Any], name: str) -> Optional[str]:
    value = arguments.get(name)
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"'{name}' must be a string")
    return value


def _attendees(arguments: Dict[str, Any]) -> Optional[List[str]]:
    value = arguments.get("attendees")
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(email, str) for email in value):
        raise ValidationError("'attendees' must be a list of email addresses")
    return value


def _event_id(arguments: Dict[str, Any]) -> str:
    value = _arg(arguments, "eventId", "event_id")
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Missing required argument 'eventId'")
    return value.strip()


def clamp_max_results(value: Any) -> int:
    if value is None:
        return DEFAULT_MAX_RESULTS
    if isinstance(value, bool):
        raise ValidationError("'maxResults' must be a number")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError("'maxResults' must be a number")
    return max(MIN_RESULTS, min(MAX_RESULTS, number))


def format_event(event: Dict[str, Any], index: Optional[int] = None) -> str:
    title = event.get("summary") or "(untitled)"
    header = f"{index}. **{title}**" if index is not None else f"**{title}**"
    lines = [
        header,
        f"   Start: {event.get('start') or 'N/A'}",
        f"   End: {event.get('end') or 'N/A'}",
        f"   Description: {event.get('description') or 'None'}",
    ]
    if event.get("location"):
        lines.append(f"   Location: {event['location']}")
    if event.get("attendees"):
        lines.append(f"   Attendees: {', '.join(event['attendees'])}")
    lines.append(f"   Link: {event.get('htmlLink') or 'N/A'}")
    lines.append(f"   ID: {event.get('id')}")
    return "\n".join(lines)


class CalendarTools:
    def __init__(self, token_manager: TokenManager, agent: CalendarAgent, default_timezone: str = "America/Sao_Paulo"):
        self.token_manager = token_manager
        self.agent = agent
        self.default_timezone = default_timezone
        self._handlers: Dict[str, Callable[[Dict[str, Any]], ToolResult]] = {
            "get_auth_url": self.get_auth_url,
            "get_auth_status": self.get_auth_status,
            "exchange_auth_code": self.exchange_auth_code,
            "list_events": self.list_events,
            "create_event": self.create_event,
            "update_event": self.update_event,
            "delete_event": self.delete_event,
        }

    @property
    def tool_names(self) -> List[str]:
        return [tool["name"] for tool in TOOLS]

    def dispatch(self, request: ToolRequest) -> ToolResult:
        name = TOOL_ALIASES.get(request.name, request.name)
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownToolError(request.name)
        arguments = request.arguments or {}
        if not isinstance(arguments, dict):
            raise ValidationError("Tool arguments must be an object")
        logger.info(f"Calling tool {name}")
        return handler(arguments)

    def get_auth_url(self, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        url = self.token_manager.authorization_url()
        text = f"**Google Calendar authorization link:**\n\n{url}\n\n**Instructions:**\n{AUTH_INSTRUCTIONS}"
        return ToolResult(text=text, data={"auth_url": url, "instructions": AUTH_INSTRUCTIONS})

    def get_auth_status(self, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        status = self.token_manager.status()
        if not status["authenticated"]:
            text = "Not authenticated. Use get_auth_url to authorize Google Calendar access."
        elif status["expired"] and not status["has_refresh_token"]:
            text = "The session has expired and cannot be refreshed. Use get_auth_url to authenticate again."
        elif status["expired"]:
            text = "Authenticated. The access token has expired and will be refreshed on the next call."
        else:
            text = f"Authenticated. Access token valid until {status['expires_at'] or 'unknown'}."
        return ToolResult(text=text, data=status)

    def exchange_auth_code(self, arguments: Dict[str, Any]) -> ToolResult:
        code = _required_text(arguments, "code")
        self.token_manager.exchange_code(code)
        status = self.token_manager.status()
        text = "Google Calendar authorization completed. You can now use the calendar tools."
        return ToolResult(text=text, data={"message": text, **status})

    def list_events(self, arguments: Dict[str, Any]) -> ToolResult:
        time_min = _arg(arguments, "timeMin", "time_min") or _utc_now_iso()
        time_max = _arg(arguments, "timeMax", "time_max")
        max_results = clamp_max_results(_arg(arguments, "maxResults", "max_results"))

        items = self.agent.list_events(time_min, time_max, max_results)
        events = [to_event(item) for item in items]
        if not events:
            message = "No events found in the requested period."
            return ToolResult(text=message, data={"message": message, "events": []})

        body = "\n\n".join(format_event(event, i + 1) for i, event in enumerate(events))
        return ToolResult(
            text=f"**Events found ({len(events)}):**\n\n{body}",
            data={"message": f"{len(events)} event(s) found", "events": events},
        )

    def create_event(self, arguments: Dict[str, Any]) -> ToolResult:
        summary = _required_text(arguments, "summary")
        for name in ("start", "end"):
            if not arguments.get(name):
                raise ValidationError(f"Missing required argument '{name}'")
        event_fields = EventFields(
            summary=summary,
            description=_optional_text(arguments, "description"),
            location=_optional_text(arguments, "location"),
            start=normalize_event_time(arguments["start"], self.default_timezone, "start"),
            end=normalize_event_time(arguments["end"], self.default_timezone, "end"),
            attendees=_attendees(arguments),
        )

        created = to_event(self.agent.insert_event(event_fields.to_upstream()))
        return ToolResult(
            text=f"**Event created successfully!**\n\n{format_event(created)}",
            data={"message": "Event created successfully", "event": created, "event_link": created["htmlLink"]},
        )

    def update_event(self, arguments: Dict[str, Any]) -> ToolResult:
        event_id = _event_id(arguments)
        summary = _optional_text(arguments, "summary")
        if summary is not None and not summary.strip():
            raise ValidationError("'summary' cannot be empty")
        patch = EventFields(
            summary=summary,
            description=_optional_text(arguments, "description"),
            location=_optional_text(arguments, "location"),
            start=normalize_event_time(arguments["start"], self.default_timezone, "start") if arguments.get("start") else None,
            end=normalize_event_time(arguments["end"], self.default_timezone, "end") if arguments.get("end") else None,
            attendees=_attendees(arguments),
        )

        current = self.agent.get_event(event_id)
        merged = merge_event_fields(EventFields.from_upstream(current), patch)
        body = dict(current)
        body.update(merged.to_upstream())

        updated = to_event(self.agent.update_event(event_id, body))
        return ToolResult(
            text=f"**Event updated successfully!**\n\n{format_event(updated)}",
            data={"message": "Event updated successfully", "event": updated, "event_link": updated["htmlLink"]},
        )

    def delete_event(self, arguments: Dict[str, Any]) -> ToolResult:
        event_id = _event_id(arguments)
        current = self.agent.get_event(event_id)
        title = current.get("summary") or "(untitled)"
        self.agent.delete_event(event_id)
        message = f"Event '{title}' deleted successfully."
        return ToolResult(text=message, data={"message": message, "event_id": event_id, "summary": title})


def create_tools(settings: Optional[Settings] = None, store: Optional[CredentialStore] = None) -> CalendarTools:
    settings = settings or load_settings()
    token_manager = TokenManager(settings, store=store)
    agent = CalendarAgent(token_manager, calendar_id=settings.calendar_id)
    return CalendarTools(token_manager, agent, default_timezone=settings.default_timezone)
