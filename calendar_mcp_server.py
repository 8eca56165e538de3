#!/usr/bin/env python3
"""
MCP Server for Google Calendar

This server provides Google Calendar integration capabilities through MCP (Model Context Protocol)
over stdio. Tool calls are dispatched to CalendarTools, which talks to the Google Calendar API.
"""

import asyncio
import logging
from typing import List, Optional, Sequence

# MCP imports
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions
import mcp.server.stdio
import mcp.types as types

from calendar_config import load_settings, setup_logging
from calendar_errors import CalendarError, NotAuthenticatedError, TokenExpiredError
from calendar_tools import TOOLS, CalendarTools, ToolRequest, create_tools

logger = logging.getLogger("calendar_mcp_server")

SERVER_NAME = "google-calendar-mcp"
SERVER_VERSION = "0.1.0"


def list_tool_definitions() -> List[types.Tool]:
    """List available Google Calendar tools"""
    return [
        types.Tool(name=tool["name"], description=tool["description"], inputSchema=tool["inputSchema"])
        for tool in TOOLS
    ]


async def call_tool(tools: CalendarTools, name: str, arguments: Optional[dict]) -> Sequence[types.TextContent]:
    """Dispatch one tool call and render the result as MCP text content.

    Missing or expired sessions are answered with guidance text; any other
    failure is raised so the MCP library reports an error result.
    """
    request = ToolRequest(name=name, arguments=arguments or {})
    try:
        # The Google client blocks, so keep it off the event loop
        result = await asyncio.to_thread(tools.dispatch, request)
    except (NotAuthenticatedError, TokenExpiredError) as e:
        logger.warning(f"Tool {name} called without a valid session: {e}")
        return [
            types.TextContent(
                type="text",
                text=f"Authentication error. Use the 'get_auth_url' tool to get the authorization link.\n\nError: {e.message}",
            )
        ]
    except CalendarError as e:
        logger.error(f"Error calling tool {name}: {e}")
        raise RuntimeError(f"Error in tool {name}: {e.message}")
    except Exception:
        logger.exception(f"Unexpected error calling tool {name}")
        raise RuntimeError(f"Error in tool {name}: internal error")

    return [types.TextContent(type="text", text=result.text)]


def create_server(tools: CalendarTools) -> Server:
    server = Server(SERVER_NAME)

    @server.list_tools()
    async def handle_list_tools() -> List[types.Tool]:
        return list_tool_definitions()

    @server.call_tool()
    async def handle_call_tool(name: str, arguments: dict) -> Sequence[types.TextContent]:
        return await call_tool(tools, name, arguments)

    return server


async def main():
    """Main function to run the MCP server"""
    settings = load_settings()
    setup_logging(settings)
    tools = create_tools(settings)
    server = create_server(tools)
    logger.info("Starting Google Calendar MCP Server (stdio)...")

    try:
        async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name=SERVER_NAME,
                    server_version=SERVER_VERSION,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                ),
            )
    except KeyboardInterrupt:
        logger.info("Server shutting down...")
    except Exception as e:
        logger.error(f"Server error: {e}")
        raise


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
