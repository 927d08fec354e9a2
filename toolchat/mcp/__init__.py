"""
MCP-слой проекта: транспорты (stdio, HTTP, SSE), JSON-RPC клиент и демонстрационный сервер.
Транспорт создаётся фабрикой по строке конфигурации, клиент владеет им единолично.
"""
from toolchat.mcp.client import ClientState, McpClient
from toolchat.mcp.errors import (
    ClientStateError,
    InvalidConfiguration,
    MalformedResponse,
    McpError,
    NoResponse,
    ProcessDied,
    ProcessNotStarted,
    RpcError,
    TransportClosed,
    TransportError,
)
from toolchat.mcp.factory import create_transport
from toolchat.mcp.models import Tool, ToolCallRequest, ToolCallResult
from toolchat.mcp.transport import McpTransport

__all__ = [
    "ClientState",
    "ClientStateError",
    "InvalidConfiguration",
    "MalformedResponse",
    "McpClient",
    "McpError",
    "McpTransport",
    "NoResponse",
    "ProcessDied",
    "ProcessNotStarted",
    "RpcError",
    "Tool",
    "ToolCallRequest",
    "ToolCallResult",
    "TransportClosed",
    "TransportError",
    "create_transport",
]
