"""Роутер для работы с MCP серверами: список инструментов и разовый вызов"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from toolchat.config import MCP_SERVER_URL
from toolchat.mcp.client import McpClient
from toolchat.mcp.errors import InvalidConfiguration, McpError
from toolchat.mcp.factory import create_transport

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mcp", tags=["mcp"])


class MCPListRequest(BaseModel):
    server: str = MCP_SERVER_URL


class MCPCallToolRequest(BaseModel):
    """Запрос на вызов инструмента MCP сервера"""
    server: str = MCP_SERVER_URL
    tool_name: str
    arguments: Dict[str, Any] = {}


@router.post("/list-tools")
async def list_tools(request: MCPListRequest):
    """
    Получение списка доступных инструментов от MCP сервера

    Args:
        request: строка конфигурации транспорта (http(s)://, sse+http(s)://, stdio://)

    Returns:
        Информация о сервере и его инструментах
    """
    try:
        logger.info(f"Listing tools from MCP server: {request.server}")
        async with McpClient(create_transport(request.server)) as client:
            tools = await client.list_tools()
            server_info = client.server_info
        return {
            "server": request.server,
            "serverInfo": server_info,
            "tools": [
                {"name": tool.name, "description": tool.description, "inputSchema": tool.input_schema}
                for tool in tools
            ],
        }
    except InvalidConfiguration as e:
        raise HTTPException(status_code=400, detail=str(e))
    except McpError as e:
        logger.error(f"MCP server {request.server} is unavailable: {e}")
        raise HTTPException(status_code=502, detail=f"MCP server error: {e}")
    except Exception as e:
        logger.error(f"Unexpected error listing MCP tools: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@router.post("/call-tool")
async def call_tool(request: MCPCallToolRequest):
    """Вызов инструмента MCP сервера. Ошибка инструмента возвращается в поле error, а не статусом."""
    try:
        logger.info(
            f"Calling MCP tool: server={request.server}, "
            f"tool={request.tool_name}, args={request.arguments}"
        )
        async with McpClient(create_transport(request.server)) as client:
            result = await client.call_tool(request.tool_name, request.arguments)
        return {
            "toolName": result.tool_name,
            "arguments": result.arguments,
            "result": result.output,
            "success": result.success,
            "error": result.error,
            "serverUrl": result.server_identity,
        }
    except InvalidConfiguration as e:
        raise HTTPException(status_code=400, detail=str(e))
    except McpError as e:
        logger.error(f"MCP server {request.server} is unavailable: {e}")
        raise HTTPException(status_code=502, detail=f"MCP server error: {e}")
    except Exception as e:
        logger.error(f"Error calling MCP tool: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
