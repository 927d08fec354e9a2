"""Типизированные ошибки транспорта и MCP-клиента"""
from typing import Optional


class McpError(Exception):
    """Базовая ошибка MCP-слоя"""


class InvalidConfiguration(McpError, ValueError):
    """Некорректная строка конфигурации транспорта"""


class TransportError(McpError):
    """Сбой на уровне транспорта (сеть, HTTP-статус, канал процесса)"""


class TransportClosed(TransportError):
    def __init__(self, identity: str = ""):
        self.identity = identity
        super().__init__(f"Transport is closed: {identity}" if identity else "Transport is closed")


class ProcessNotStarted(TransportError):
    """Процесс MCP-сервера не запущен (connect() не вызывался или запуск не удался)"""


class ProcessDied(TransportError):
    def __init__(self, exit_code: Optional[int]):
        self.exit_code = exit_code
        super().__init__(f"MCP server process exited with code {exit_code}")


class NoResponse(TransportError):
    """Поток вывода закончился, а ответа так и не было"""


class MalformedResponse(TransportError):
    """Ответ не удалось найти за отведённое число строк или в нём нет обязательных полей"""


class RpcError(McpError):
    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(f"MCP Error ({code}): {message}")


class ClientStateError(McpError):
    """Операция недопустима в текущем состоянии McpClient"""
