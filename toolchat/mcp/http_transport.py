"""HTTP транспорт для MCP-клиента: один POST на каждый JSON-RPC запрос"""
import logging
from typing import Any, Dict, Optional

import httpx

from toolchat.config import MCP_HTTP_TIMEOUT
from toolchat.mcp.errors import TransportClosed, TransportError
from toolchat.mcp.models import is_notification
from toolchat.mcp.transport import (
    McpTransport,
    describe_envelope,
    extract_sse_payload,
    interpret_response,
    parse_json_response,
)

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"


class HttpTransport(McpTransport):
    def __init__(
        self,
        server_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = MCP_HTTP_TIMEOUT,
    ):
        super().__init__(server_url)
        self.server_url = server_url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self.session_id: Optional[str] = None
        self._closed = False

    def is_open(self) -> bool:
        return not self._closed

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        if self.session_id:
            headers[SESSION_HEADER] = self.session_id
        return headers

    async def send_request(self, envelope: Dict[str, Any]) -> Dict[str, Any]:
        if self._closed:
            raise TransportClosed(self.identity)

        logger.debug(f"HTTP request to MCP server {self.server_url}: {describe_envelope(envelope)}")
        try:
            response = await self._client.post(self.server_url, json=envelope, headers=self._headers())
        except httpx.TimeoutException as e:
            logger.error(f"Timeout requesting MCP server {self.server_url}: {e}")
            raise TransportError(
                "Timeout requesting MCP server. The server may be unavailable or overloaded"
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Cannot connect to MCP server {self.server_url}: {e}")
            raise TransportError(f"Cannot connect to MCP server. Check URL: {self.server_url}") from e
        except httpx.InvalidURL as e:
            logger.error(f"Invalid MCP server URL {self.server_url}: {e}")
            raise TransportError(f"Invalid MCP server URL: {self.server_url}") from e

        # Mcp-Session-Id запоминаем из первого ответа, который его прислал
        received_session = response.headers.get(SESSION_HEADER)
        if received_session and self.session_id is None:
            self.session_id = received_session
            logger.debug(f"Received {SESSION_HEADER}: {received_session}")

        if not response.is_success:
            body = response.text[:500]
            logger.error(f"MCP server HTTP error: {response.status_code} - {body}")
            raise TransportError(f"HTTP {response.status_code}: {body}")

        if is_notification(envelope):
            return {}

        body = response.text
        logger.debug(f"HTTP response from MCP server ({response.headers.get('content-type', '')}): {body[:500]}")
        payload = extract_sse_payload(body, response.headers.get("content-type", ""))
        return interpret_response(parse_json_response(payload))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()
        logger.debug(f"HTTP transport closed: {self.server_url}")
