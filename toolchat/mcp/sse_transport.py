"""
SSE транспорт для MCP-клиента.

Клиент держит открытым GET-поток Server-Sent Events. Первым событием сервер
присылает `endpoint` - адрес, куда POST-ом отправляются JSON-RPC запросы.
Ответы приходят в поток событиями `message` и сопоставляются с запросами по id.
"""
import asyncio
import contextlib
import json
import logging
from collections import OrderedDict
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import httpx

from toolchat.config import MCP_HTTP_TIMEOUT, MCP_SSE_CONNECT_TIMEOUT
from toolchat.mcp.errors import NoResponse, TransportClosed, TransportError
from toolchat.mcp.models import is_notification
from toolchat.mcp.transport import McpTransport, describe_envelope, interpret_response

logger = logging.getLogger(__name__)


class SseTransport(McpTransport):
    def __init__(
        self,
        stream_url: str,
        client: Optional[httpx.AsyncClient] = None,
        connect_timeout: float = MCP_SSE_CONNECT_TIMEOUT,
        identity: Optional[str] = None,
    ):
        super().__init__(identity or "sse+" + stream_url)
        self.stream_url = stream_url
        self.connect_timeout = connect_timeout
        # Поток живёт долго, поэтому ограничиваем только установку соединения и запись
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(MCP_HTTP_TIMEOUT, read=None)
        )
        self.endpoint: Optional[str] = None
        self._endpoint_ready = asyncio.Event()
        self._pending: "OrderedDict[Any, asyncio.Future]" = OrderedDict()
        self._stream: Optional[httpx.Response] = None
        self._reader: Optional[asyncio.Task] = None
        self._stream_ended = False
        self._closed = False

    def is_open(self) -> bool:
        return not self._closed and self._reader is not None and not self._stream_ended

    async def connect(self) -> None:
        if self._closed:
            raise TransportClosed(self.identity)
        if self._reader is not None:
            return

        logger.info(f"Opening SSE stream to MCP server: {self.stream_url}")
        try:
            request = self._client.build_request(
                "GET", self.stream_url, headers={"Accept": "text/event-stream"}
            )
            self._stream = await self._client.send(request, stream=True)
        except httpx.RequestError as e:
            logger.error(f"Cannot open SSE stream {self.stream_url}: {e}")
            raise TransportError(f"Cannot connect to MCP server. Check URL: {self.stream_url}") from e
        except httpx.InvalidURL as e:
            logger.error(f"Invalid SSE stream URL {self.stream_url}: {e}")
            raise TransportError(f"Invalid MCP server URL: {self.stream_url}") from e

        if not self._stream.is_success:
            status = self._stream.status_code
            await self._stream.aclose()
            raise TransportError(f"HTTP {status}: SSE stream refused by MCP server")

        self._reader = asyncio.create_task(self._read_events())
        try:
            await asyncio.wait_for(self._endpoint_ready.wait(), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            raise NoResponse("MCP server did not announce a message endpoint") from None
        if self.endpoint is None:
            raise NoResponse("SSE stream ended before the message endpoint was announced")
        logger.info(f"SSE message endpoint: {self.endpoint}")

    async def _read_events(self) -> None:
        event = "message"
        data_lines: List[str] = []
        try:
            async for line in self._stream.aiter_lines():
                line = line.rstrip("\r")
                if not line:
                    # Пустая строка завершает событие
                    if data_lines:
                        self._dispatch(event, "\n".join(data_lines))
                    event, data_lines = "message", []
                    continue
                if line.startswith(":"):
                    continue
                field, _, value = line.partition(":")
                if value.startswith(" "):
                    value = value[1:]
                if field == "event":
                    event = value or "message"
                elif field == "data":
                    data_lines.append(value)
            if data_lines:
                self._dispatch(event, "\n".join(data_lines))
        except httpx.HTTPError as e:
            logger.error(f"SSE stream {self.stream_url} failed: {e}")
        finally:
            self._stream_ended = True
            self._endpoint_ready.set()
            self._fail_pending(NoResponse("SSE stream ended before a response arrived"))

    def _dispatch(self, event: str, data: str) -> None:
        if event == "endpoint":
            self.endpoint = urljoin(self.stream_url, data.strip())
            self._endpoint_ready.set()
            return
        if event != "message":
            logger.debug(f"Ignoring SSE event '{event}'")
            return

        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            logger.debug(f"Skipping non-JSON SSE data: {data[:200]}")
            return
        if not isinstance(message, dict) or ("result" not in message and "error" not in message):
            # Уведомления и запросы сервера клиенту не ждёт
            logger.debug(f"Ignoring SSE message without result/error: {data[:200]}")
            return

        message_id = message.get("id")
        if message_id is None:
            # Сервер не указал id - отдаём самому старому ожидающему запросу
            future = next(iter(self._pending.values()), None)
        else:
            future = self._pending.get(message_id)
            if future is None:
                logger.warning(f"Dropping SSE response with unknown id {message_id!r}")
                return
        if future is None or future.done():
            logger.debug(f"Unsolicited SSE response: {data[:200]}")
            return
        future.set_result(message)

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)

    async def send_request(self, envelope: Dict[str, Any]) -> Dict[str, Any]:
        if self._closed:
            raise TransportClosed(self.identity)
        if self._reader is None or self.endpoint is None:
            raise TransportError("SSE transport is not connected")
        if self._stream_ended:
            raise NoResponse("SSE stream has ended")

        logger.debug(f"SSE request to {self.endpoint}: {describe_envelope(envelope)}")
        if is_notification(envelope):
            await self._post(envelope)
            return {}

        request_id = envelope["id"]
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            response = await self._post(envelope)
            inline = self._inline_response(response)
            message = inline if inline is not None else await future
        finally:
            self._pending.pop(request_id, None)
        return interpret_response(message)

    async def _post(self, envelope: Dict[str, Any]) -> httpx.Response:
        try:
            response = await self._client.post(
                self.endpoint, json=envelope, headers={"Content-Type": "application/json"}
            )
        except httpx.RequestError as e:
            logger.error(f"Cannot post to MCP endpoint {self.endpoint}: {e}")
            raise TransportError(f"Cannot connect to MCP server endpoint: {self.endpoint}") from e
        except httpx.InvalidURL as e:
            logger.error(f"Invalid MCP message endpoint {self.endpoint}: {e}")
            raise TransportError(f"Invalid MCP server endpoint: {self.endpoint}") from e
        if not response.is_success:
            body = response.text[:500]
            logger.error(f"MCP server HTTP error: {response.status_code} - {body}")
            raise TransportError(f"HTTP {response.status_code}: {body}")
        return response

    @staticmethod
    def _inline_response(response: httpx.Response) -> Optional[Dict[str, Any]]:
        """Некоторые серверы отвечают прямо в теле POST, а не в поток"""
        if "application/json" not in response.headers.get("content-type", ""):
            return None
        try:
            message = response.json()
        except ValueError:
            return None
        if isinstance(message, dict) and ("result" in message or "error" in message):
            return message
        return None

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._fail_pending(TransportClosed(self.identity))

        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
        if self._stream is not None:
            await self._stream.aclose()
        await self._client.aclose()
        logger.debug(f"SSE transport closed: {self.stream_url}")
