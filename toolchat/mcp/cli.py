"""
Взаимодействие с MCP сервером из командной строки.

Использование:
  toolchat-mcp                                   # список инструментов сервера из MCP_SERVER_URL
  toolchat-mcp <tool> [args...]                  # вызов инструмента (args в формате key=value)
  toolchat-mcp --server "stdio://npx -y @modelcontextprotocol/server-everything"

Примеры:
  toolchat-mcp reminder.list status=active
  toolchat-mcp --server http://localhost:9001/mcp get_current_weather location="New York"
"""
import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List

from toolchat.config import MCP_SERVER_URL
from toolchat.mcp.client import McpClient
from toolchat.mcp.errors import McpError
from toolchat.mcp.factory import create_transport


def _parse_args(args: List[str]) -> Dict[str, Any]:
    """Парсинг аргументов вида key=value в словарь."""
    out: Dict[str, Any] = {}
    for s in args:
        if "=" in s:
            k, v = s.split("=", 1)
            k = k.strip()
            v = v.strip()
            if v.startswith('"') and v.endswith('"'):
                v = v[1:-1]
            if v.lower() in ("true", "false"):
                v = v.lower() == "true"
            elif v.lstrip("-").isdigit():
                v = int(v)
            out[k] = v
        else:
            out[s] = True
    return out


async def list_tools(server: str) -> int:
    """Получить и вывести список инструментов."""
    async with McpClient(create_transport(server)) as client:
        tools = await client.list_tools()

    print(f"\n{'='*60}")
    print(f"📦 MCP сервер: {server}")
    print(f"{'='*60}\n")
    if not tools:
        print("⚠️  Инструменты не найдены.")
        return 0
    print(f"🔧 Доступно инструментов: {len(tools)}\n")
    for i, tool in enumerate(tools, 1):
        print(f"  {i}. {tool.name}")
        if tool.description:
            print(f"     {tool.description[:120]}")
        props = (tool.input_schema or {}).get("properties", {})
        if props:
            print(f"     Параметры: {', '.join(props.keys())}")
        print()
    print(f"{'='*60}\n")
    return 0


async def call_tool(server: str, tool_name: str, arguments: Dict[str, Any]) -> int:
    """Вызвать инструмент и вывести результат."""
    async with McpClient(create_transport(server)) as client:
        result = await client.call_tool(tool_name, arguments)

    if not result.success:
        print(f"❌ Инструмент вернул ошибку: {result.error}\n")
        return 1
    try:
        print(json.dumps(json.loads(result.output), ensure_ascii=False, indent=2))
    except ValueError:
        print(result.output)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Взаимодействие с MCP сервером (stdio / HTTP / SSE)",
        epilog="Примеры: %(prog)s  |  %(prog)s reminder.add text=купить хлеб",
    )
    parser.add_argument(
        "tool",
        nargs="?",
        help="Имя инструмента для вызова (если не указано - вывод списка инструментов)",
    )
    parser.add_argument(
        "args",
        nargs="*",
        help="Аргументы в формате key=value (например: status=active)",
    )
    parser.add_argument(
        "--server",
        default=MCP_SERVER_URL,
        help=f"Строка конфигурации транспорта (по умолчанию {MCP_SERVER_URL})",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Подробные логи")
    ns = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if ns.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        if ns.tool:
            code = asyncio.run(call_tool(ns.server, ns.tool, _parse_args(ns.args)))
        else:
            code = asyncio.run(list_tools(ns.server))
    except McpError as e:
        print(f"❌ Ошибка: {e}")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
