"""Фабрика транспортов MCP по строке конфигурации"""
import logging
from typing import List

import httpx

from toolchat.mcp.errors import InvalidConfiguration
from toolchat.mcp.http_transport import HttpTransport
from toolchat.mcp.sse_transport import SseTransport
from toolchat.mcp.stdio_transport import StdioTransport
from toolchat.mcp.transport import McpTransport

logger = logging.getLogger(__name__)

STDIO_PREFIXES = ("stdio://", "stdio:")
SSE_PREFIX = "sse+"


def parse_stdio_command(config: str) -> List[str]:
    """'stdio://cmd a b' или 'stdio:cmd a b' -> ['cmd', 'a', 'b']"""
    for prefix in STDIO_PREFIXES:
        if config.startswith(prefix):
            command = config[len(prefix):].split()
            if not command:
                raise InvalidConfiguration(f"Command for stdio transport is not specified: {config!r}")
            return command
    raise InvalidConfiguration(f"Not a stdio transport configuration: {config!r}")


def validate_url(url: str, config: str) -> None:
    """Проверяет, что httpx сможет разобрать URL; иначе InvalidConfiguration"""
    try:
        httpx.URL(url)
    except httpx.InvalidURL as e:
        raise InvalidConfiguration(f"Invalid MCP server URL {config!r}: {e}") from e


def create_transport(config: str) -> McpTransport:
    """
    Создаёт транспорт по строке конфигурации

    Args:
        config: строка конфигурации:
            - "http://..." или "https://..." - HTTP транспорт
            - "sse+http://..." или "sse+https://..." - SSE транспорт
            - "stdio://command arg1 arg2" или "stdio:command arg1 arg2" - stdio транспорт
            - любая другая строка - HTTP транспорт (для совместимости)

    Returns:
        Транспорт (ещё не подключённый)

    Raises:
        InvalidConfiguration: пустая stdio-команда или URL, который не разбирается
    """
    if config.startswith(("http://", "https://")):
        validate_url(config, config)
        logger.info(f"Creating HTTP transport for: {config}")
        return HttpTransport(config)

    if config.startswith((SSE_PREFIX + "http://", SSE_PREFIX + "https://")):
        validate_url(config[len(SSE_PREFIX):], config)
        logger.info(f"Creating SSE transport for: {config}")
        return SseTransport(config[len(SSE_PREFIX):], identity=config)

    if config.startswith(STDIO_PREFIXES):
        command = parse_stdio_command(config)
        logger.info(f"Creating stdio transport for command: {' '.join(command)}")
        return StdioTransport(command, identity=config)

    # По умолчанию считаем HTTP
    validate_url(config, config)
    logger.info(f"Unknown transport configuration, falling back to HTTP: {config}")
    return HttpTransport(config)
