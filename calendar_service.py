import json
import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel
import uvicorn

from calendar_config import load_settings, setup_logging
from calendar_errors import CalendarError, ValidationError
from calendar_tools import AUTH_CALLBACK_PAGE, TOOLS, CalendarTools, ToolRequest, create_tools

logger = logging.getLogger("calendar_service")

EventTime = Union[str, Dict[str, str]]


# Pydantic models for request validation
class CreateEventRequest(BaseModel):
    summary: Optional[str] = None
    start: Optional[EventTime] = None
    end: Optional[EventTime] = None
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: Optional[List[str]] = None


class UpdateEventRequest(BaseModel):
    summary: Optional[str] = None
    start: Optional[EventTime] = None
    end: Optional[EventTime] = None
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: Optional[List[str]] = None


class ToolCallRequest(BaseModel):
    name: str
    # OpenAI tool calls carry arguments as a JSON-encoded string
    arguments: Optional[Union[Dict[str, Any], str]] = None


def _parse_tool_arguments(arguments: Optional[Union[Dict[str, Any], str]]) -> Dict[str, Any]:
    if arguments is None or arguments == "":
        return {}
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except ValueError:
            raise ValidationError("Tool arguments are not valid JSON")
    if not isinstance(arguments, dict):
        raise ValidationError("Tool arguments must be an object")
    return arguments


def openai_tool_definitions() -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool["name"],
                "description": tool["description"],
                "parameters": tool["inputSchema"],
            },
        }
        for tool in TOOLS
    ]


def create_app(tools: Optional[CalendarTools] = None) -> FastAPI:
    tools = tools or create_tools()

    app = FastAPI(
        title="Google Calendar Service",
        description="HTTP API and tool-calling endpoints for Google Calendar",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(CalendarError)
    async def calendar_error_handler(request: Request, exc: CalendarError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'][1:]) or 'body'}: {err['msg']}" for err in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": f"Invalid request: {problems}"})

    def _call(name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return tools.dispatch(ToolRequest(name=name, arguments=arguments)).data

    # Health check endpoints
    @app.get("/")
    def root() -> Dict[str, Any]:
        return {
            "service": "Google Calendar Service",
            "status": "running",
            "tools": tools.tool_names,
        }

    @app.get("/health")
    def health_check() -> Dict[str, Any]:
        return {"status": "ok", "service": "google-calendar-mcp"}

    # OAuth endpoints
    @app.get("/auth/url")
    def auth_url() -> Dict[str, Any]:
        """Google OAuth consent URL"""
        return _call("get_auth_url", {})

    @app.get("/auth/callback", response_class=HTMLResponse)
    def auth_callback(code: Optional[str] = None, error: Optional[str] = None) -> HTMLResponse:
        """Exchange the authorization code returned by Google"""
        if error:
            raise ValidationError(f"Authorization was not granted: {error}")
        if not code:
            raise ValidationError("Missing authorization code")
        tools.token_manager.exchange_code(code)
        return HTMLResponse(AUTH_CALLBACK_PAGE)

    @app.get("/auth/status")
    def auth_status() -> Dict[str, Any]:
        return _call("get_auth_status", {})

    # Calendar endpoints
    @app.get("/calendar/events")
    def list_events(
        timeMin: Optional[str] = None,
        timeMax: Optional[str] = None,
        maxResults: Optional[int] = None,
    ) -> Dict[str, Any]:
        """List Google Calendar events"""
        arguments = {"timeMin": timeMin, "timeMax": timeMax, "maxResults": maxResults}
        return _call("list_events", {k: v for k, v in arguments.items() if v is not None})

    @app.post("/calendar/events")
    def create_event(request: CreateEventRequest) -> Dict[str, Any]:
        """Create a new Google Calendar event"""
        return _call("create_event", request.model_dump(exclude_none=True))

    @app.patch("/calendar/events/{event_id}")
    @app.put("/calendar/events/{event_id}")
    def update_event(event_id: str, request: UpdateEventRequest) -> Dict[str, Any]:
        """Update a Google Calendar event; omitted fields keep their current value"""
        arguments = request.model_dump(exclude_none=True)
        arguments["eventId"] = event_id
        return _call("update_event", arguments)

    @app.delete("/calendar/events/{event_id}")
    def delete_event(event_id: str) -> Dict[str, Any]:
        """Delete a Google Calendar event by event ID"""
        return _call("delete_event", {"eventId": event_id})

    # OpenAI tool-calling endpoints
    @app.get("/tools/list")
    def list_tools() -> Dict[str, Any]:
        return {"tools": openai_tool_definitions()}

    @app.post("/tools/call")
    def call_tool(request: ToolCallRequest) -> Dict[str, Any]:
        result = tools.dispatch(ToolRequest(name=request.name, arguments=_parse_tool_arguments(request.arguments)))
        return {"name": request.name, "result": result.data, "content": result.text}

    return app


app = create_app()


def run():
    settings = load_settings()
    setup_logging(settings)
    logger.info(f"Starting Google Calendar Service on {settings.host}:{settings.port}...")
    uvicorn.run(
        "calendar_service:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        workers=1,
        timeout_keep_alive=30,
    )


if __name__ == "__main__":
    run()
