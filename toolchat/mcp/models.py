"""Модели MCP-слоя: инструменты, вызовы инструментов и JSON-RPC конверты"""
import json
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

JSONRPC_VERSION = "2.0"

# Значение аргумента инструмента: закрытое объединение строка | число | булево
ArgumentValue = Union[bool, int, float, str]


def normalize_argument(value: Any) -> Optional[ArgumentValue]:
    """
    Приводит произвольное значение к ArgumentValue.

    None -> None (аргумент будет пропущен), списки и объекты -> JSON-строка,
    всё остальное, что не строка/число/булево, -> str(value).
    """
    if value is None:
        return None
    if isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def normalize_arguments(arguments: Optional[Dict[str, Any]]) -> Dict[str, ArgumentValue]:
    normalized = {}
    for key, value in (arguments or {}).items():
        value = normalize_argument(value)
        if value is not None:
            normalized[str(key)] = value
    return normalized


class Tool(BaseModel):
    """Инструмент, объявленный MCP-сервером в ответе tools/list"""
    model_config = ConfigDict(frozen=True)

    name: str
    description: Optional[str] = None
    input_schema: Optional[Dict[str, Any]] = None
    server_identity: Optional[str] = None

    @classmethod
    def from_listing(cls, entry: Dict[str, Any], server_identity: Optional[str] = None) -> Optional["Tool"]:
        name = entry.get("name") if isinstance(entry, dict) else None
        if not isinstance(name, str) or not name:
            return None
        schema = entry.get("inputSchema")
        return cls(
            name=name,
            description=entry.get("description"),
            input_schema=schema if isinstance(schema, dict) else None,
            server_identity=server_identity,
        )


class ToolCallRequest(BaseModel):
    tool_name: str
    arguments: Dict[str, ArgumentValue] = Field(default_factory=dict)

    @field_validator("arguments", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Dict[str, ArgumentValue]:
        return normalize_arguments(value)

    def to_params(self) -> Dict[str, Any]:
        """Параметры JSON-RPC метода tools/call"""
        return {"name": self.tool_name, "arguments": dict(self.arguments)}

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "ToolCallRequest":
        return cls(tool_name=params["name"], arguments=params.get("arguments") or {})


class ToolCallResult(BaseModel):
    tool_name: str
    arguments: Dict[str, ArgumentValue] = Field(default_factory=dict)
    output: str = ""
    success: bool
    error: Optional[str] = None
    server_identity: Optional[str] = None


def build_request(request_id: int, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "method": method,
        "params": params or {},
    }


def build_notification(method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    # У уведомления нет id - ответа на него не ждём
    envelope = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params:
        envelope["params"] = params
    return envelope


def is_notification(envelope: Dict[str, Any]) -> bool:
    return "id" not in envelope
