"""
Демонстрационный MCP stdio-сервер напоминаний: переиспользует сервис reminders, не дублирует его.
Запускается отдельным процессом (toolchat-mcp-server), к нему подключается stdio транспорт:
MCP_SERVER_URL=stdio://toolchat-mcp-server
"""
import json
import logging
import sys

import anyio
import mcp.types as types
from mcp.server import Server
from mcp.server.stdio import stdio_server

from toolchat.services.reminders import ReminderStore

logger = logging.getLogger(__name__)

SERVER_NAME = "toolchat-reminders"

REMINDER_TOOLS = [
    types.Tool(
        name="reminder.list",
        description="Список напоминаний. Можно отфильтровать по статусу (active | done).",
        inputSchema={
            "type": "object",
            "properties": {
                "status": {
                    "type": "string",
                    "description": "Статус напоминаний: active или done",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="reminder.add",
        description="Добавляет напоминание и возвращает его.",
        inputSchema={
            "type": "object",
            "properties": {
                "text": {"type": "string", "description": "Текст напоминания"},
            },
            "required": ["text"],
        },
    ),
]


def _create_server(store: ReminderStore) -> Server:
    """Создаёт MCP-сервер с инструментами reminder.list и reminder.add."""
    server = Server(SERVER_NAME)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return REMINDER_TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[types.TextContent]:
        logger.info("call_tool %s %s", name, arguments)
        if name == "reminder.list":
            payload = {"items": store.list(arguments.get("status"))}
        elif name == "reminder.add":
            payload = store.add(str(arguments.get("text", "")))
        else:
            raise ValueError(f"Unknown tool: {name}")
        return [types.TextContent(type="text", text=json.dumps(payload, ensure_ascii=False))]

    return server


async def _run_stdio() -> None:
    """Запуск сервера поверх stdio (stdin/stdout)."""
    server = _create_server(ReminderStore())
    init_options = server.create_initialization_options()

    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, init_options)


def run_server() -> None:
    """Точка входа: запуск MCP-сервера (для subprocess)."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    anyio.run(_run_stdio, backend="asyncio")


if __name__ == "__main__":
    run_server()
