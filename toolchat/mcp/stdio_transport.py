"""Stdio транспорт: JSON-RPC построчно через stdin/stdout дочернего процесса"""
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from toolchat.config import MCP_STDIO_SCAN_LIMIT
from toolchat.mcp.errors import (
    MalformedResponse,
    NoResponse,
    ProcessDied,
    ProcessNotStarted,
    TransportClosed,
)
from toolchat.mcp.models import is_notification
from toolchat.mcp.process import ProcessHandle, ProcessSupervisor
from toolchat.mcp.transport import McpTransport, describe_envelope, interpret_response

logger = logging.getLogger(__name__)

# Сколько ждать завершения процесса после закрытия его stdout, прежде чем решить, что он жив
EXIT_PROBE_SECONDS = 1.0


class StdioTransport(McpTransport):
    """
    Общается с MCP-сервером через стандартный ввод/вывод процесса.

    Один запрос - одна строка JSON. Сервер может писать в тот же поток логи
    (stderr слит со stdout), поэтому ответом считается первая строка, которая
    парсится в JSON-объект; остальные строки пропускаются.
    """

    def __init__(
        self,
        command: List[str],
        working_directory: Optional[str] = None,
        environment: Optional[Dict[str, str]] = None,
        supervisor: Optional[ProcessSupervisor] = None,
        scan_limit: int = MCP_STDIO_SCAN_LIMIT,
        identity: Optional[str] = None,
    ):
        super().__init__(identity or "stdio://" + " ".join(command))
        self.command = list(command)
        self.working_directory = working_directory
        self.environment = environment
        self.supervisor = supervisor or ProcessSupervisor()
        self.scan_limit = scan_limit
        self._handle: Optional[ProcessHandle] = None
        self._closed = False

    async def connect(self) -> None:
        if self._closed:
            raise TransportClosed(self.identity)
        if self._handle is not None:
            return
        self._handle = await self.supervisor.start(
            self.command, self.working_directory, self.environment
        )

    def is_open(self) -> bool:
        return not self._closed and self._handle is not None and self._handle.alive

    async def send_request(self, envelope: Dict[str, Any]) -> Dict[str, Any]:
        if self._closed:
            raise TransportClosed(self.identity)
        handle = self._handle
        if handle is None:
            raise ProcessNotStarted("MCP server process is not started")
        if not handle.alive:
            raise ProcessDied(handle.exit_code)

        # Одна строка без переносов внутри
        line = json.dumps(envelope, ensure_ascii=False, separators=(",", ":"))
        logger.debug(f"Sending over stdio: {describe_envelope(envelope)}")
        try:
            handle.stdin.write(line.encode("utf-8") + b"\n")
            await handle.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.error(f"Broken pipe writing to MCP server pid {handle.pid}: {e}")
            await self._raise_for_exit(handle)

        if is_notification(envelope):
            return {}

        response = await self._read_response(handle)
        return interpret_response(response)

    async def _read_response(self, handle: ProcessHandle) -> Dict[str, Any]:
        for attempt in range(1, self.scan_limit + 1):
            try:
                raw = await handle.stdout.readline()
            except (asyncio.LimitOverrunError, ValueError) as e:
                # Строка длиннее лимита буфера: остаток строки в потоке уже не разобрать
                logger.error(f"Oversized line from MCP server pid {handle.pid}: {e}")
                raise MalformedResponse(
                    f"MCP server response line exceeds {self.supervisor.stream_limit} bytes"
                ) from e
            if not raw:
                await self._raise_for_exit(handle)

            text = raw.decode("utf-8", errors="replace").strip()
            if not text:
                continue
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError:
                # Скорее всего лог сервера
                logger.debug(f"Skipping non-JSON line (attempt {attempt}): {text[:200]}")
                continue
            if not isinstance(parsed, dict):
                logger.debug(f"Skipping JSON that is not an object (attempt {attempt}): {text[:200]}")
                continue

            logger.debug(f"Received over stdio: {text[:500]}")
            return parsed

        raise MalformedResponse(
            f"No valid JSON-RPC response from MCP server after {self.scan_limit} lines"
        )

    async def _raise_for_exit(self, handle: ProcessHandle) -> None:
        exit_code = await handle.wait_exit(EXIT_PROBE_SECONDS)
        if exit_code is not None:
            raise ProcessDied(exit_code)
        raise NoResponse("No response from MCP server (stdout closed)")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        handle = self._handle
        self._handle = None
        if handle is None:
            return
        # Каналы закрываются до (и независимо от) исхода остановки процесса
        try:
            await handle.close_pipes()
        finally:
            await self.supervisor.terminate(handle)
        logger.debug(f"Stdio transport closed: {self.identity}")
