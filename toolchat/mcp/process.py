"""Запуск и остановка процесса MCP-сервера"""
import asyncio
import logging
import os
from typing import Dict, List, Optional

from toolchat.config import MCP_PROCESS_GRACE_SECONDS
from toolchat.mcp.errors import ProcessNotStarted

logger = logging.getLogger(__name__)

# Лимит длины одной строки вывода: результаты инструментов бывают большими
STREAM_LIMIT = 16 * 1024 * 1024


class ProcessHandle:
    """Запущенный дочерний процесс и его каналы stdin/stdout (stderr слит в stdout)"""

    def __init__(self, process: asyncio.subprocess.Process, command: List[str]):
        self.process = process
        self.command = command

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def alive(self) -> bool:
        return self.process.returncode is None

    @property
    def exit_code(self) -> Optional[int]:
        return self.process.returncode

    @property
    def stdin(self) -> asyncio.StreamWriter:
        return self.process.stdin

    @property
    def stdout(self) -> asyncio.StreamReader:
        return self.process.stdout

    async def wait_exit(self, timeout: float) -> Optional[int]:
        """Ждёт завершения процесса не дольше timeout секунд, возвращает код выхода или None"""
        try:
            return await asyncio.wait_for(self.process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def close_pipes(self) -> None:
        """
        Закрывает stdin; ошибки только логируются.

        stdout остаётся за протоколом подпроцесса и закрывается при остановке процесса.
        """
        stdin = self.process.stdin
        if stdin is not None and not stdin.is_closing():
            try:
                stdin.close()
                await stdin.wait_closed()
            except (BrokenPipeError, ConnectionResetError, OSError) as e:
                logger.warning(f"Error closing stdin of pid {self.pid}: {e}")


class ProcessSupervisor:
    """
    Запускает дочерний процесс и завершает его по протоколу
    "мягкая остановка -> ожидание -> принудительное завершение".
    """

    def __init__(self, grace_seconds: float = MCP_PROCESS_GRACE_SECONDS, stream_limit: int = STREAM_LIMIT):
        self.grace_seconds = grace_seconds
        self.stream_limit = stream_limit

    async def start(
        self,
        command: List[str],
        working_directory: Optional[str] = None,
        environment: Optional[Dict[str, str]] = None,
    ) -> ProcessHandle:
        if not command:
            raise ProcessNotStarted("Empty command")

        # Наследуем окружение родителя и накладываем переопределения
        env = os.environ.copy()
        if environment:
            env.update(environment)

        logger.info(f"Starting MCP server over stdio: {' '.join(command)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=working_directory,
                env=env,
                limit=self.stream_limit,
            )
        except OSError as e:
            logger.error(f"Failed to start MCP server {command[0]}: {e}")
            raise ProcessNotStarted(f"Failed to start MCP server: {e}") from e

        logger.info(f"MCP server started (pid {process.pid})")
        return ProcessHandle(process, command)

    async def terminate(self, handle: ProcessHandle, grace_seconds: Optional[float] = None) -> None:
        """Останавливает процесс. Никогда не выбрасывает исключений."""
        grace = self.grace_seconds if grace_seconds is None else grace_seconds
        process = handle.process
        if process.returncode is not None:
            logger.debug(f"MCP server pid {handle.pid} already exited with code {process.returncode}")
            return

        logger.info(f"Terminating MCP server (pid {handle.pid})")
        try:
            process.terminate()
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.error(f"Failed to signal MCP server pid {handle.pid}: {e}")

        if await handle.wait_exit(grace) is not None:
            logger.info(f"MCP server pid {handle.pid} exited with code {process.returncode}")
            return

        logger.warning(f"MCP server pid {handle.pid} did not exit in {grace}s, killing")
        try:
            process.kill()
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.error(f"Failed to kill MCP server pid {handle.pid}: {e}")
        try:
            await process.wait()
        except Exception as e:
            logger.error(f"Error waiting for MCP server pid {handle.pid}: {e}")
