"""Error types raised by the calendar tools.

Each error carries the HTTP status the REST face answers with; the MCP faces
render the message as text.
"""

from typing import Optional


class CalendarError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(CalendarError):
    """OAuth client credentials could not be loaded."""

    status_code = 500


class AuthExchangeError(CalendarError):
    """The authorization code was rejected by Google."""

    status_code = 400


class NotAuthenticatedError(CalendarError):
    status_code = 401

    def __init__(self, message: str = "Not authenticated. Use get_auth_url to authorize Google Calendar access."):
        super().__init__(message)


class TokenExpiredError(CalendarError):
    """The access token expired and could not be refreshed; the session was cleared."""

    status_code = 401

    def __init__(self, message: str = "Session expired and the token refresh failed. Use get_auth_url to authenticate again."):
        super().__init__(message)


class ValidationError(CalendarError):
    status_code = 400


class EventNotFoundError(CalendarError):
    status_code = 404

    def __init__(self, event_id: str):
        super().__init__(f"Event not found: {event_id}")
        self.event_id = event_id


class UnknownToolError(CalendarError):
    status_code = 400

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class UpstreamError(CalendarError):
    """Any other failure reported by the Google APIs, message preserved."""

    status_code = 500

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
