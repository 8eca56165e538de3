"""
Configuration for the Google Calendar MCP server.

Settings are read from the environment (a local .env file is loaded first) and
shared by the stdio MCP server, the streamable MCP server and the HTTP service.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Load environment variables
load_dotenv()

CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"
CALENDAR_EVENTS_SCOPE = "https://www.googleapis.com/auth/calendar.events"


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    credentials_json: Optional[str] = None
    credentials_file: str = "gcp-oauth-keys.json"
    calendar_id: str = "primary"
    default_timezone: str = "America/Sao_Paulo"
    force_consent: bool = True
    request_events_scope: bool = False
    host: str = "0.0.0.0"
    port: int = 3000
    base_url: Optional[str] = None
    mcp_http_host: str = "127.0.0.1"
    mcp_http_port: int = 8001
    mcp_http_path: str = "/calendar"
    log_level: str = "INFO"

    @property
    def scopes(self) -> list:
        scopes = [CALENDAR_SCOPE]
        if self.request_events_scope:
            scopes.append(CALENDAR_EVENTS_SCOPE)
        return scopes

    @property
    def callback_url(self) -> Optional[str]:
        """Redirect URI derived from BASE_URL, if one is configured."""
        if not self.base_url:
            return None
        return self.base_url.rstrip("/") + "/auth/callback"


def load_settings() -> Settings:
    return Settings(
        credentials_json=os.getenv("GOOGLE_CALENDAR_CREDENTIALS") or None,
        credentials_file=os.getenv("GOOGLE_CALENDAR_CREDENTIALS_FILE", "gcp-oauth-keys.json"),
        calendar_id=os.getenv("GOOGLE_CALENDAR_ID", "primary"),
        default_timezone=os.getenv("DEFAULT_TIMEZONE", "America/Sao_Paulo"),
        force_consent=_env_flag("GOOGLE_OAUTH_FORCE_CONSENT", True),
        request_events_scope=_env_flag("GOOGLE_CALENDAR_EVENTS_SCOPE", False),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
        base_url=os.getenv("BASE_URL") or None,
        mcp_http_host=os.getenv("MCP_HTTP_HOST", "127.0.0.1"),
        mcp_http_port=int(os.getenv("MCP_HTTP_PORT", "8001")),
        mcp_http_path=os.getenv("MCP_HTTP_PATH", "/calendar"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def setup_logging(settings: Settings) -> None:
    # logging.basicConfig writes to stderr, which keeps stdout free for MCP stdio framing
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
