"""
MCP-клиент поверх транспорта: initialize, tools/list, tools/call.

Состояния: UNCONNECTED -> CONNECTED -> CLOSED (конечное).
"""
import enum
import json
import logging
from typing import Any, Dict, List, Optional

from toolchat.config import MCP_CLIENT_NAME, MCP_CLIENT_VERSION, MCP_PROTOCOL_VERSION
from toolchat.mcp.errors import ClientStateError, McpError
from toolchat.mcp.models import (
    Tool,
    ToolCallRequest,
    ToolCallResult,
    build_notification,
    build_request,
)
from toolchat.mcp.transport import McpTransport

logger = logging.getLogger(__name__)


class ClientState(str, enum.Enum):
    UNCONNECTED = "unconnected"
    CONNECTED = "connected"
    CLOSED = "closed"


class McpClient:
    def __init__(
        self,
        transport: McpTransport,
        client_name: str = MCP_CLIENT_NAME,
        client_version: str = MCP_CLIENT_VERSION,
        protocol_version: str = MCP_PROTOCOL_VERSION,
    ):
        self.transport = transport
        self.client_info = {"name": client_name, "version": client_version}
        self.protocol_version = protocol_version
        self.state = ClientState.UNCONNECTED
        self.server_info: Dict[str, Any] = {}
        self.server_capabilities: Dict[str, Any] = {}

    @property
    def server_identity(self) -> str:
        return self.transport.identity

    def _require(self, state: ClientState, operation: str) -> None:
        if self.state is not state:
            raise ClientStateError(f"Cannot {operation}: MCP client is {self.state.value}")

    async def _request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        envelope = build_request(self.transport.next_id(), method, params)
        return await self.transport.send_request(envelope)

    async def initialize(self) -> Dict[str, Any]:
        """
        Подключение и рукопожатие MCP.

        При ошибке клиент остаётся UNCONNECTED, исключение транспорта пробрасывается.

        Returns:
            serverInfo, который сообщил сервер
        """
        if self.state is ClientState.CONNECTED:
            return self.server_info
        self._require(ClientState.UNCONNECTED, "initialize")

        logger.info(f"Initializing MCP server {self.server_identity}")
        await self.transport.connect()
        result = await self._request(
            "initialize",
            {
                "protocolVersion": self.protocol_version,
                "capabilities": {"roots": {"listChanged": False}, "sampling": {}},
                "clientInfo": self.client_info,
            },
        )
        self.server_info = result.get("serverInfo") or {}
        self.server_capabilities = result.get("capabilities") or {}

        try:
            await self.transport.send_request(build_notification("notifications/initialized"))
        except McpError as e:
            logger.warning(f"Failed to send initialized notification to {self.server_identity}: {e}")

        self.state = ClientState.CONNECTED
        logger.info(f"MCP server initialized: {self.server_info.get('name', self.server_identity)}")
        return self.server_info

    async def list_tools(self) -> List[Tool]:
        """
        Список инструментов сервера в порядке, который дал сервер.

        Любая ошибка транспорта или RPC превращается в пустой список (и запись в лог).
        """
        self._require(ClientState.CONNECTED, "list tools")

        tools: List[Tool] = []
        cursor = None
        seen_cursors = set()
        try:
            while True:
                result = await self._request("tools/list", {"cursor": cursor} if cursor else {})
                for entry in result.get("tools") or []:
                    tool = Tool.from_listing(entry, self.server_identity)
                    if tool is not None:
                        tools.append(tool)
                cursor = result.get("nextCursor")
                if not cursor:
                    break
                if not isinstance(cursor, str) or cursor in seen_cursors:
                    logger.warning(f"Stopping tools/list pagination on repeated cursor {cursor!r} from {self.server_identity}")
                    break
                seen_cursors.add(cursor)
        except McpError as e:
            logger.error(f"Error listing tools from {self.server_identity}: {e}")
            return []

        logger.info(f"Received {len(tools)} tools from {self.server_identity}: {[t.name for t in tools]}")
        return tools

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolCallResult:
        """Вызов инструмента. Ошибки не выбрасываются, а возвращаются как success=False."""
        self._require(ClientState.CONNECTED, "call tool")

        request = ToolCallRequest(tool_name=name, arguments=arguments or {})
        logger.info(f"Calling MCP tool {name} with arguments: {request.arguments}")
        try:
            result = await self._request("tools/call", request.to_params())
        except McpError as e:
            logger.error(f"Error calling tool {name}: {e}")
            return ToolCallResult(
                tool_name=name,
                arguments=request.arguments,
                success=False,
                error=str(e),
                server_identity=self.server_identity,
            )

        output = extract_tool_output(result)
        if result.get("isError"):
            logger.error(f"Tool {name} reported error: {output[:200]}")
            return ToolCallResult(
                tool_name=name,
                arguments=request.arguments,
                output=output,
                success=False,
                error=output or "Tool reported an error",
                server_identity=self.server_identity,
            )

        logger.info(f"Tool {name} succeeded, result: {output[:100]}...")
        return ToolCallResult(
            tool_name=name,
            arguments=request.arguments,
            output=output,
            success=True,
            server_identity=self.server_identity,
        )

    async def close(self) -> None:
        if self.state is ClientState.CLOSED:
            return
        self.state = ClientState.CLOSED
        await self.transport.close()
        logger.info(f"MCP client disconnected from {self.server_identity}")

    async def __aenter__(self) -> "McpClient":
        try:
            await self.initialize()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def extract_tool_output(result: Dict[str, Any]) -> str:
    """Текст результата tools/call: MCP возвращает список объектов с полем text"""
    content = result.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, dict) and item.get("type", "text") == "text" and "text" in item:
                parts.append(str(item["text"]))
            elif isinstance(item, str):
                parts.append(item)
            else:
                parts.append(json.dumps(item, ensure_ascii=False))
        return "\n".join(parts)
    if isinstance(content, dict) and "text" in content:
        return str(content["text"])
    return json.dumps(result, ensure_ascii=False)
