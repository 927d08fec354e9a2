"""
Протокол вызова инструментов через текст ответа модели.

Модели получают описание инструментов в system prompt и отвечают JSON:
  {"tool": "<name>", "args": {...}}               - вызов одного инструмента
  {"tools": [{"tool": ..., "args": ...}, ...]}    - несколько вызовов по порядку
  {"final": "<answer>"}                           - финальный ответ
"""
import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from toolchat.mcp.models import Tool, ToolCallRequest

logger = logging.getLogger(__name__)


class ParsedReply(BaseModel):
    directives: List[ToolCallRequest] = Field(default_factory=list)
    final: Optional[str] = None
    # Текст вокруг JSON (если модель добавила пояснения)
    prose: str = ""


def strip_code_fences(content: str) -> str:
    """Убирает обёртку ```json ... ``` вокруг ответа"""
    cleaned = content.strip()
    if cleaned.startswith("```"):
        lines = cleaned.splitlines()
        cleaned = "\n".join(lines[1:])
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    return cleaned.strip()


def _locate_json(text: str) -> Tuple[Optional[Any], str]:
    """Ищет JSON в тексте: сначала весь текст, затем фрагмент от первой скобки до последней"""
    try:
        return json.loads(text), ""
    except json.JSONDecodeError:
        pass

    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    end = max(text.rfind("}"), text.rfind("]"))
    if not starts or end <= min(starts):
        return None, text
    start = min(starts)
    try:
        parsed = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return None, text
    prose = " ".join(part.strip() for part in (text[:start], text[end + 1:]) if part.strip())
    return parsed, prose


def _directive(item: Any) -> Optional[ToolCallRequest]:
    if not isinstance(item, dict):
        return None
    name = item.get("tool")
    if not isinstance(name, str) or not name.strip():
        return None
    args = item.get("args", item.get("arguments"))
    return ToolCallRequest(tool_name=name.strip(), arguments=args if isinstance(args, dict) else {})


def parse_reply(content: str) -> ParsedReply:
    """Разбирает ответ модели на директивы вызова инструментов и финальный ответ"""
    parsed, prose = _locate_json(strip_code_fences(content or ""))

    items: List[Any] = []
    if isinstance(parsed, list):
        items = parsed
    elif isinstance(parsed, dict):
        if "tool" in parsed:
            items = [parsed]
        elif isinstance(parsed.get("tools"), list):
            items = parsed["tools"]
        elif "final" in parsed:
            final = parsed["final"]
            if not isinstance(final, str):
                final = json.dumps(final, ensure_ascii=False)
            return ParsedReply(final=final, prose=prose)

    directives = [d for d in (_directive(item) for item in items) if d is not None]
    if directives:
        logger.debug(f"Parsed {len(directives)} tool directives: {[d.tool_name for d in directives]}")
    return ParsedReply(directives=directives, prose=prose)


def extract_final_answer(content: str) -> str:
    """Значение поля final, если модель ответила {"final": ...}, иначе ответ как есть"""
    parsed = parse_reply(content)
    if parsed.final is not None:
        return parsed.final
    return content


def describe_arguments(schema: Optional[Dict[str, Any]]) -> str:
    """Краткое описание аргументов по JSON Schema инструмента"""
    if not schema:
        return "no arguments"
    properties = schema.get("properties")
    if not isinstance(properties, dict):
        schema_type = schema.get("type")
        return f"type: {schema_type}" if schema_type else "see schema"

    described = []
    for name, prop in properties.items():
        prop = prop if isinstance(prop, dict) else {}
        text = f"{name}: {prop.get('type', 'any')}"
        if prop.get("title"):
            text += f" ({prop['title']})"
        if prop.get("description"):
            text += f" - {prop['description']}"
        described.append(text)
    if not described:
        return "no arguments"

    required = [r for r in schema.get("required") or [] if isinstance(r, str)]
    suffix = f" (required: {', '.join(required)})" if required else ""
    return ", ".join(described) + suffix


def build_tools_system_prompt(tools: Sequence[Tool]) -> str:
    lines = [
        "You are an AI agent that can use tools through MCP (Model Context Protocol).",
        "You can chain multiple tool calls in a conversation to accomplish complex tasks.",
        "",
        "Available tools:",
    ]
    for index, tool in enumerate(tools, 1):
        header = f"{index}) {tool.name}"
        if tool.description:
            header += f": {tool.description}"
        lines.append(header)
        lines.append(f"   Arguments: {describe_arguments(tool.input_schema)}")
    lines += [
        "",
        "IMPORTANT RULES:",
        "1. After a tool is executed you will receive its result and can call another tool if needed.",
        "2. Continue using tools until you have all the information needed for a final answer.",
        "3. Only stop using tools when you can give a complete answer to the user.",
        "",
        "RESPONSE FORMAT:",
        "To call a tool, respond with JSON ONLY in this format:",
        '{"tool": "<tool_name>", "args": { ... }}',
        "To call several tools in order, respond with:",
        '{"tools": [{"tool": "<tool_name>", "args": { ... }}, ...]}',
        "When you have enough information, respond with JSON ONLY in this format:",
        '{"final": "<your final answer>"}',
        "",
        "CRITICAL: Your response must be valid JSON. Do not include any text before or after the JSON.",
    ]
    return "\n".join(lines)
