"""Тесты агентного цикла с подменёнными вендором и MCP-сервером"""
import json
import pytest
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

# Настройка pytest-asyncio
pytest_plugins = ('pytest_asyncio',)

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from toolchat.mcp.errors import InvalidConfiguration, ProcessNotStarted, RpcError
from toolchat.mcp.factory import create_transport
from toolchat.mcp.transport import McpTransport
from toolchat.services.llm_api import ChatMessage, TokenUsage, VendorError
from toolchat.services.tool_directives import parse_reply
from toolchat.services.tool_orchestrator import (
    RunRequestError,
    RunStatus,
    ToolCallOrchestrator,
    build_system_prompt,
)
from toolchat.services.vendors import CompletionReply, UnknownVendor, VendorDispatcher


class ReminderServer(McpTransport):
    """MCP-сервер напоминаний в памяти"""

    def __init__(self, identity: str, tools=("reminder.list", "reminder.add"), fail_connect=False):
        super().__init__(identity)
        self.tool_names = list(tools)
        self.fail_connect = fail_connect
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def connect(self) -> None:
        if self.fail_connect:
            raise ProcessNotStarted("cannot start")

    async def send_request(self, envelope: Dict[str, Any]) -> Dict[str, Any]:
        method = envelope["method"]
        params = envelope.get("params") or {}
        if "id" not in envelope:
            return {}
        if method == "initialize":
            return {"serverInfo": {"name": self.identity}, "capabilities": {}}
        if method == "tools/list":
            return {"tools": [{"name": name, "description": f"{name} on {self.identity}"} for name in self.tool_names]}
        if method == "tools/call":
            self.calls.append(params)
            if params["name"] == "reminder.add" and not params["arguments"].get("text"):
                return {"content": [{"type": "text", "text": "text is required"}], "isError": True}
            if params["name"] == "reminder.list":
                return {"content": [{"type": "text", "text": json.dumps({"items": []})}]}
            return {"content": [{"type": "text", "text": f"{params['name']} ok"}]}
        raise RpcError(-32601, "Method not found")

    async def close(self) -> None:
        self.closed = True

    def is_open(self) -> bool:
        return not self.closed


class ScriptedVendor:
    """Вендор, который по очереди отдаёт заранее заданные ответы"""

    def __init__(self, replies: List[str], usage: Optional[TokenUsage] = None, repeat_last=False):
        self.name = "scripted"
        self.api_key = "key"
        self.replies = list(replies)
        self.repeat_last = repeat_last
        self.usage = usage or TokenUsage(prompt_tokens=10, completion_tokens=2, total_tokens=12, cost=0.001)
        self.transcripts: List[List[ChatMessage]] = []
        self.catalogues = []

    async def complete(self, transcript, tool_catalogue, model=None, max_tokens=None, temperature=None):
        self.transcripts.append(list(transcript))
        self.catalogues.append([tool.name for tool in tool_catalogue])
        content = self.replies[0] if self.repeat_last and len(self.replies) == 1 else self.replies.pop(0)
        parsed = parse_reply(content)
        return CompletionReply(
            content=content,
            directives=parsed.directives,
            usage=self.usage,
            model=model or "scripted-model",
            final_answer=parsed.final if parsed.final is not None else content,
            prose=parsed.prose,
        )


def _orchestrator(vendor, servers: Dict[str, ReminderServer]) -> ToolCallOrchestrator:
    return ToolCallOrchestrator(
        dispatcher=VendorDispatcher({"scripted": vendor}),
        transport_factory=lambda target: servers[target],
    )


LIST_DIRECTIVE = '{"tool": "reminder.list", "args": {"status": "active"}}'


class TestToolCallOrchestratorScenarios:
    """Основные сценарии агентного цикла"""

    @pytest.mark.asyncio
    async def test_tool_call_then_final_answer(self):
        """Тест: итерация 1 вызывает reminder.list, итерация 2 отвечает "No reminders." -> Done за 1 итерацию"""
        vendor = ScriptedVendor([LIST_DIRECTIVE, "No reminders."])
        server = ReminderServer("stdio://reminders")
        orchestrator = _orchestrator(vendor, {"stdio://reminders": server})

        result = await orchestrator.run("Any active reminders?", "scripted", ["stdio://reminders"])

        assert result.status is RunStatus.DONE
        assert result.content == "No reminders."
        assert result.total_tool_iterations == 1
        assert len(result.tool_call_trace) == 1
        assert result.tool_call_trace[0].iteration == 1
        call = result.tool_calls[0]
        assert (call.tool_name, call.arguments, call.output, call.success) == (
            "reminder.list", {"status": "active"}, '{"items": []}', True)
        assert call.server_identity == "stdio://reminders"
        assert server.calls == [{"name": "reminder.list", "arguments": {"status": "active"}}]
        assert server.closed is True

        # Во второй вызов модель получила свой ответ и результат инструмента
        second = vendor.transcripts[1]
        assert [m.role for m in second] == ["user", "assistant", "user"]
        assert second[1].content == LIST_DIRECTIVE
        assert 'Tool reminder.list result: {"items": []}' in second[2].content
        assert vendor.catalogues[0] == ["reminder.list", "reminder.add"]

    @pytest.mark.asyncio
    async def test_iteration_limit(self):
        """Тест: maxToolIterations=1, модель всегда просит инструмент -> Aborted после одного вызова"""
        vendor = ScriptedVendor([LIST_DIRECTIVE], repeat_last=True)
        server = ReminderServer("stdio://reminders")
        orchestrator = _orchestrator(vendor, {"stdio://reminders": server})

        result = await orchestrator.run("loop", "scripted", ["stdio://reminders"], max_tool_iterations=1)

        assert result.status is RunStatus.ABORTED_ITERATION_LIMIT
        assert result.total_tool_iterations == 1
        assert len(server.calls) == 1
        assert len(vendor.transcripts) == 1
        assert result.content == ""
        assert server.closed is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [1, 2, 5])
    async def test_iterations_never_exceed_limit(self, limit):
        """Тест: число итераций не превышает лимит, трасса содержит по записи на итерацию"""
        vendor = ScriptedVendor([LIST_DIRECTIVE], repeat_last=True)
        orchestrator = _orchestrator(vendor, {"s": ReminderServer("s")})

        result = await orchestrator.run("loop", "scripted", ["s"], max_tool_iterations=limit)

        assert result.total_tool_iterations == limit
        assert len(result.tool_call_trace) == limit
        assert [r.iteration for r in result.tool_call_trace] == list(range(1, limit + 1))

    @pytest.mark.asyncio
    async def test_abort_returns_last_prose(self):
        """Тест: при обрыве по лимиту ответом становится последний текст модели вне JSON"""
        vendor = ScriptedVendor(["Checking your reminders. " + LIST_DIRECTIVE])
        orchestrator = _orchestrator(vendor, {"s": ReminderServer("s")})

        result = await orchestrator.run("hi", "scripted", ["s"], max_tool_iterations=1)

        assert result.status is RunStatus.ABORTED_ITERATION_LIMIT
        assert result.content == "Checking your reminders."

    @pytest.mark.asyncio
    async def test_several_directives_in_one_round(self):
        """Тест: несколько директив выполняются по порядку в одной итерации"""
        vendor = ScriptedVendor([
            '{"tools": [{"tool": "reminder.add", "args": {"text": "milk"}}, {"tool": "reminder.list", "args": {}}]}',
            '{"final": "Added."}',
        ])
        server = ReminderServer("s")
        orchestrator = _orchestrator(vendor, {"s": server})

        result = await orchestrator.run("add milk", "scripted", ["s"])

        assert result.content == "Added."
        assert result.total_tool_iterations == 1
        assert len(result.tool_call_trace) == 1
        assert [c.tool_name for c in result.tool_calls] == ["reminder.add", "reminder.list"]
        assert [c["name"] for c in server.calls] == ["reminder.add", "reminder.list"]

    @pytest.mark.asyncio
    async def test_tool_failure_is_folded_into_transcript(self):
        """Тест: ошибка инструмента не прерывает цикл, модель видит её в следующем запросе"""
        vendor = ScriptedVendor(['{"tool": "reminder.add", "args": {}}', "Please tell me the text."])
        orchestrator = _orchestrator(vendor, {"s": ReminderServer("s")})

        result = await orchestrator.run("add", "scripted", ["s"])

        assert result.status is RunStatus.DONE
        assert result.content == "Please tell me the text."
        assert result.tool_calls[0].success is False
        assert result.tool_calls[0].error == "text is required"
        assert "Tool reminder.add failed: text is required" in vendor.transcripts[1][-1].content

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        """Тест: вызов несуществующего инструмента -> неуспешный результат, а не исключение"""
        vendor = ScriptedVendor(['{"tool": "weather.get", "args": {}}', "Sorry."])
        orchestrator = _orchestrator(vendor, {"s": ReminderServer("s")})

        result = await orchestrator.run("weather?", "scripted", ["s"])

        assert result.tool_calls[0].success is False
        assert result.tool_calls[0].error == "Unknown tool: weather.get"
        assert result.content == "Sorry."

    @pytest.mark.asyncio
    async def test_usage_is_aggregated(self):
        """Тест: usage суммируется по всем вызовам вендора"""
        vendor = ScriptedVendor([LIST_DIRECTIVE, LIST_DIRECTIVE, "done"])
        orchestrator = _orchestrator(vendor, {"s": ReminderServer("s")})

        result = await orchestrator.run("hi", "scripted", ["s"])

        assert result.usage.prompt_tokens == 30
        assert result.usage.total_tokens == 36
        assert result.usage.cost == pytest.approx(0.003)
        assert result.model == "scripted-model"
        assert result.execution_time_ms >= 0

    @pytest.mark.asyncio
    async def test_no_tools_is_plain_chat(self):
        """Тест: без инструментов цикл работает как обычный чат"""
        vendor = ScriptedVendor(["Hello!"])
        orchestrator = _orchestrator(vendor, {"s": ReminderServer("s", tools=())})

        result = await orchestrator.run("hi", "scripted", ["s"])

        assert result.content == "Hello!"
        assert result.total_tool_iterations == 0
        assert vendor.catalogues == [[]]

    @pytest.mark.asyncio
    async def test_on_tool_call_callback(self):
        vendor = ScriptedVendor([LIST_DIRECTIVE, "ok"])
        callback = AsyncMock()
        orchestrator = _orchestrator(vendor, {"s": ReminderServer("s")})

        await orchestrator.run("hi", "scripted", ["s"], on_tool_call=callback)

        callback.assert_awaited_once()
        assert callback.await_args.args[0].tool_name == "reminder.list"

    @pytest.mark.asyncio
    async def test_system_prompt_history_and_options(self):
        """Тест: system prompt, история и параметры генерации передаются вендору"""
        vendor = ScriptedVendor(["ok"])
        vendor.complete = AsyncMock(side_effect=vendor.complete)
        orchestrator = _orchestrator(vendor, {"s": ReminderServer("s")})
        history = [ChatMessage(role="user", content="earlier"), ChatMessage(role="assistant", content="reply")]

        await orchestrator.run(
            "now", "scripted", ["s"], model="m-1", max_tokens=64, temperature=0.2,
            system_prompt="Be brief.", output_format="json", history=history,
        )

        transcript = vendor.transcripts[0]
        assert [m.role for m in transcript] == ["system", "user", "assistant", "user"]
        assert transcript[0].content.startswith("Be brief.")
        assert "valid JSON" in transcript[0].content
        assert transcript[-1].content == "now"
        kwargs = vendor.complete.await_args.kwargs
        assert (kwargs["model"], kwargs["max_tokens"], kwargs["temperature"]) == ("m-1", 64, 0.2)


class TestToolCallOrchestratorServers:
    """Тесты нескольких MCP-серверов"""

    @pytest.mark.asyncio
    async def test_calls_are_routed_to_owning_server(self):
        """Тест: каталог объединяется (первый сервер выигрывает), вызов идёт на сервер инструмента"""
        first = ReminderServer("first", tools=("reminder.list",))
        second = ReminderServer("second", tools=("reminder.list", "calendar.today"))
        vendor = ScriptedVendor([
            '{"tools": [{"tool": "reminder.list", "args": {}}, {"tool": "calendar.today", "args": {}}]}',
            "done",
        ])
        orchestrator = _orchestrator(vendor, {"first": first, "second": second})

        result = await orchestrator.run("plan my day", "scripted", ["first", "second"])

        assert vendor.catalogues[0] == ["reminder.list", "calendar.today"]
        assert [c["name"] for c in first.calls] == ["reminder.list"]
        assert [c["name"] for c in second.calls] == ["calendar.today"]
        assert [c.server_identity for c in result.tool_calls] == ["first", "second"]
        assert first.closed and second.closed

    @pytest.mark.asyncio
    async def test_unavailable_server_is_skipped(self):
        """Тест: сервер, который не удалось подключить, пропускается"""
        broken = ReminderServer("broken", fail_connect=True)
        working = ReminderServer("working")
        vendor = ScriptedVendor([LIST_DIRECTIVE, "ok"])
        orchestrator = _orchestrator(vendor, {"broken": broken, "working": working})

        result = await orchestrator.run("hi", "scripted", ["broken", "working"])

        assert result.tool_calls[0].server_identity == "working"
        assert broken.closed is True

    @pytest.mark.asyncio
    async def test_vendor_error_is_fatal_and_closes_transports(self):
        """Тест: ошибка вендора прерывает запуск, транспорты закрываются"""
        vendor = ScriptedVendor([])
        vendor.complete = AsyncMock(side_effect=VendorError("HTTP 500"))
        server = ReminderServer("s")
        orchestrator = _orchestrator(vendor, {"s": server})

        with pytest.raises(VendorError):
            await orchestrator.run("hi", "scripted", ["s"])
        assert server.closed is True

    @pytest.mark.asyncio
    async def test_invalid_target_fails_before_any_connection(self):
        """Тест: пустая stdio-команда -> InvalidConfiguration до запуска серверов"""
        vendor = ScriptedVendor(["unused"])
        orchestrator = ToolCallOrchestrator(dispatcher=VendorDispatcher({"scripted": vendor}),
                                            transport_factory=create_transport)
        with pytest.raises(InvalidConfiguration):
            await orchestrator.run("hi", "scripted", ["stdio://"])
        assert vendor.transcripts == []

    @pytest.mark.asyncio
    async def test_transports_created_before_invalid_target_are_closed(self):
        """Тест: некорректная строка после корректной -> уже созданный транспорт закрыт"""
        created = ReminderServer("first")

        def factory(target):
            if target == "first":
                return created
            return create_transport(target)

        vendor = ScriptedVendor(["unused"])
        orchestrator = ToolCallOrchestrator(dispatcher=VendorDispatcher({"scripted": vendor}),
                                            transport_factory=factory)
        with pytest.raises(InvalidConfiguration):
            await orchestrator.run("hi", "scripted", ["first", "http://[::1"])
        assert created.closed is True
        assert created.calls == []

    @pytest.mark.asyncio
    async def test_malformed_url_is_invalid_configuration(self):
        """Тест: URL, который не разбирается, -> InvalidConfiguration, а не httpx.InvalidURL"""
        vendor = ScriptedVendor(["unused"])
        orchestrator = ToolCallOrchestrator(dispatcher=VendorDispatcher({"scripted": vendor}),
                                            transport_factory=create_transport)
        with pytest.raises(InvalidConfiguration):
            await orchestrator.run("hi", "scripted", ["http://[::1"])
        assert vendor.transcripts == []


class TestRunValidation:
    """Тесты проверки параметров запуска"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"message": "   "},
            {"vendor": ""},
            {"mcp_targets": []},
            {"mcp_targets": ["s", " "]},
            {"max_tool_iterations": 0},
            {"max_tool_iterations": 51},
        ],
    )
    async def test_invalid_requests(self, kwargs):
        params = {"message": "hi", "vendor": "scripted", "mcp_targets": ["s"], "max_tool_iterations": 3}
        params.update(kwargs)
        orchestrator = _orchestrator(ScriptedVendor(["ok"]), {"s": ReminderServer("s")})
        with pytest.raises(RunRequestError):
            await orchestrator.run(**params)

    @pytest.mark.asyncio
    async def test_unknown_vendor(self):
        orchestrator = _orchestrator(ScriptedVendor(["ok"]), {"s": ReminderServer("s")})
        with pytest.raises(UnknownVendor):
            await orchestrator.run("hi", "openai", ["s"])

    def test_build_system_prompt(self):
        assert build_system_prompt(None) is None
        assert build_system_prompt("  ") is None
        prompt = build_system_prompt(None, "JSON", '{"type": "object"}')
        assert "valid JSON" in prompt
        assert '{"type": "object"}' in prompt
