"""
Абстракция транспорта MCP.

Транспорт переносит JSON-RPC конверты до MCP-сервера и обратно. Три реализации:
stdio (дочерний процесс), HTTP (запрос/ответ) и SSE (поток событий + POST).
Создаются только через toolchat.mcp.factory.create_transport.
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from toolchat.mcp.errors import MalformedResponse, RpcError

logger = logging.getLogger(__name__)


class McpTransport(ABC):
    """Канал JSON-RPC до одного MCP-сервера. Принадлежит ровно одному клиенту."""

    def __init__(self, identity: str):
        self.identity = identity
        self._request_id = 0

    def next_id(self) -> int:
        """Следующий id запроса: уникален и строго возрастает в пределах транспорта, начиная с 1"""
        self._request_id += 1
        return self._request_id

    async def connect(self) -> None:
        """Установка соединения (запуск процесса, открытие потока). По умолчанию ничего не делает."""

    @abstractmethod
    async def send_request(self, envelope: Dict[str, Any]) -> Dict[str, Any]:
        """
        Отправляет JSON-RPC конверт и возвращает поле result ответа.

        Для уведомлений (конверт без id) ответ не ожидается и возвращается {}.

        Raises:
            TransportClosed, ProcessNotStarted, ProcessDied, NoResponse,
            MalformedResponse, TransportError, RpcError
        """

    @abstractmethod
    async def close(self) -> None:
        """Закрывает транспорт и освобождает ресурсы. Повторный вызов ничего не делает."""

    @abstractmethod
    def is_open(self) -> bool:
        pass

    async def __aenter__(self) -> "McpTransport":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.identity!r})"


def interpret_response(response: Any) -> Dict[str, Any]:
    """
    Разбор JSON-RPC ответа по общим для всех транспортов правилам.

    Есть error -> RpcError(code, message) (code по умолчанию -1, message - "unknown error").
    Иначе обязателен объект result, его отсутствие - MalformedResponse.
    """
    if not isinstance(response, dict):
        raise MalformedResponse(f"JSON-RPC response is not an object: {str(response)[:200]}")

    if "error" in response:
        error = response.get("error")
        code = -1
        message = "unknown error"
        if isinstance(error, dict):
            raw_code = error.get("code")
            if isinstance(raw_code, (int, float)) and not isinstance(raw_code, bool):
                code = int(raw_code)
            if isinstance(error.get("message"), str):
                message = error["message"]
        logger.error(f"MCP server returned error: code={code}, message={message}")
        raise RpcError(code, message)

    result = response.get("result")
    if not isinstance(result, dict):
        raise MalformedResponse("Missing 'result' object in MCP server response")
    return result


def extract_sse_payload(body: str, content_type: str = "") -> str:
    """
    Достаёт JSON из тела HTTP-ответа.

    Сервер может ответить обычным JSON или потоком Server-Sent Events, и
    тогда берётся полезная нагрузка последней строки data:.
    """
    looks_like_sse = (
        "text/event-stream" in content_type
        or body.startswith("event:")
        or body.startswith("data:")
        or "\ndata:" in body
    )
    if not looks_like_sse:
        return body

    data_lines = [line for line in body.splitlines() if line.startswith("data:")]
    if not data_lines:
        return body
    return data_lines[-1][len("data:"):].strip()


def parse_json_response(text: str) -> Dict[str, Any]:
    """Парсит тело ответа в объект, иначе MalformedResponse"""
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"Invalid JSON response from MCP server: {e}") from e
    if not isinstance(parsed, dict):
        raise MalformedResponse(f"JSON-RPC response is not an object: {text[:200]}")
    return parsed


def describe_envelope(envelope: Dict[str, Any], limit: Optional[int] = 500) -> str:
    text = json.dumps(envelope, ensure_ascii=False)
    if limit is not None and len(text) > limit:
        return text[:limit] + "..."
    return text
