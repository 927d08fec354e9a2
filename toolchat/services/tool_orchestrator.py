"""
Агентный цикл: LLM решает, какие MCP-инструменты вызвать, результаты возвращаются в диалог.

Thinking -> (ToolExecuting -> Thinking)* -> Finalizing -> Done | Aborted(IterationLimit)
"""
import contextlib
import enum
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from toolchat import config
from toolchat.mcp.client import McpClient
from toolchat.mcp.errors import McpError
from toolchat.mcp.factory import create_transport
from toolchat.mcp.models import Tool, ToolCallRequest, ToolCallResult
from toolchat.mcp.transport import McpTransport
from toolchat.services.llm_api import (
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_USER,
    ChatMessage,
    TokenUsage,
    combine_usage,
)
from toolchat.services.vendors import VendorDispatcher

logger = logging.getLogger(__name__)

ToolCallCallback = Callable[[ToolCallResult], Awaitable[None]]


class RunStatus(str, enum.Enum):
    DONE = "done"
    ABORTED_ITERATION_LIMIT = "aborted_iteration_limit"


class RunRequestError(ValueError):
    """Некорректные параметры запуска агентного цикла"""


class ToolRound(BaseModel):
    """Результаты всех вызовов одной итерации, в порядке выдачи моделью"""
    iteration: int
    results: List[ToolCallResult]


class AgentRunState(BaseModel):
    iteration: int = 0
    transcript: List[ChatMessage] = Field(default_factory=list)
    tool_call_trace: List[ToolRound] = Field(default_factory=list)
    terminal: bool = False
    # Последний текст модели вне JSON-директив; это ответ при обрыве по лимиту
    last_prose: str = ""


class RunResult(BaseModel):
    content: str
    status: RunStatus
    total_tool_iterations: int
    usage: Optional[TokenUsage] = None
    model: Optional[str] = None
    execution_time_ms: int = 0
    tool_call_trace: List[ToolRound] = Field(default_factory=list)

    @property
    def tool_calls(self) -> List[ToolCallResult]:
        return [result for round_ in self.tool_call_trace for result in round_.results]


def build_system_prompt(
    system_prompt: Optional[str],
    output_format: Optional[str] = None,
    output_schema: Optional[str] = None,
) -> Optional[str]:
    parts = []
    if system_prompt and system_prompt.strip():
        parts.append(system_prompt.strip())
    if output_format and output_format.lower() == "json":
        hint = 'The value of "final" must be a valid JSON document.'
        if output_schema:
            hint += f"\nIt must follow this JSON schema:\n{output_schema}"
        parts.append(hint)
    return "\n\n".join(parts) if parts else None


def summarize_results(results: Sequence[ToolCallResult]) -> str:
    """Синтетическая реплика пользователя с результатами инструментов"""
    lines = []
    for result in results:
        if result.success:
            lines.append(f"Tool {result.tool_name} result: {result.output}")
        else:
            lines.append(f"Tool {result.tool_name} failed: {result.error}")
    lines.append("")
    lines.append(
        "Call another tool if you need more information. "
        'Otherwise respond with JSON ONLY: {"final": "<your final answer>"}'
    )
    return "\n".join(lines)


def validate_run_request(
    message: str,
    vendor: str,
    mcp_targets: Sequence[str],
    max_tool_iterations: int,
) -> None:
    if not message or not message.strip():
        raise RunRequestError("Message cannot be empty")
    if not vendor or not vendor.strip():
        raise RunRequestError("Vendor cannot be empty")
    if not mcp_targets:
        raise RunRequestError("At least one MCP server URL is required")
    if any(not target or not target.strip() for target in mcp_targets):
        raise RunRequestError("MCP server URLs cannot be blank")
    if not 1 <= max_tool_iterations <= config.MAX_TOOL_ITERATIONS_LIMIT:
        raise RunRequestError(
            f"maxToolIterations must be between 1 and {config.MAX_TOOL_ITERATIONS_LIMIT}"
        )


class ToolCallOrchestrator:
    def __init__(
        self,
        dispatcher: Optional[VendorDispatcher] = None,
        transport_factory: Callable[[str], McpTransport] = create_transport,
        default_max_tokens: int = config.MAX_TOKENS,
    ):
        self.dispatcher = dispatcher or VendorDispatcher.from_config()
        self.transport_factory = transport_factory
        self.default_max_tokens = default_max_tokens

    async def _open_clients(
        self,
        stack: contextlib.AsyncExitStack,
        mcp_targets: Sequence[str],
    ) -> Tuple[List[Tool], Dict[str, McpClient]]:
        """
        Подключается ко всем MCP-серверам по порядку и собирает общий каталог.

        При совпадении имён инструмент берётся с первого сервера.
        Сервер, который не удалось инициализировать, пропускается.
        """
        # Все строки конфигурации проверяются до запуска первого процесса;
        # уже созданные транспорты закрывает стек, даже если следующая строка некорректна
        transports: List[McpTransport] = []
        for target in mcp_targets:
            transport = self.transport_factory(target.strip())
            stack.push_async_callback(transport.close)
            transports.append(transport)

        catalogue: List[Tool] = []
        routes: Dict[str, McpClient] = {}
        for transport in transports:
            client = McpClient(transport)
            try:
                await stack.enter_async_context(client)
            except McpError as e:
                logger.error(f"Failed to initialize MCP server {transport.identity}: {e}")
                continue

            for tool in await client.list_tools():
                if tool.name in routes:
                    logger.warning(
                        f"Tool {tool.name} from {client.server_identity} shadowed by "
                        f"{routes[tool.name].server_identity}"
                    )
                    continue
                routes[tool.name] = client
                catalogue.append(tool)

        logger.info(f"Tool catalogue: {len(catalogue)} tools from {len(transports)} MCP servers")
        return catalogue, routes

    async def _execute(self, directive: ToolCallRequest, routes: Dict[str, McpClient]) -> ToolCallResult:
        client = routes.get(directive.tool_name)
        if client is None:
            logger.warning(f"Model requested unknown tool: {directive.tool_name}")
            return ToolCallResult(
                tool_name=directive.tool_name,
                arguments=directive.arguments,
                success=False,
                error=f"Unknown tool: {directive.tool_name}",
            )
        return await client.call_tool(directive.tool_name, directive.arguments)

    async def run(
        self,
        message: str,
        vendor: str,
        mcp_targets: Sequence[str],
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        system_prompt: Optional[str] = None,
        output_format: Optional[str] = None,
        output_schema: Optional[str] = None,
        history: Optional[Sequence[ChatMessage]] = None,
        max_tool_iterations: int = config.MAX_TOOL_ITERATIONS,
        on_tool_call: Optional[ToolCallCallback] = None,
    ) -> RunResult:
        """
        Один запуск агентного цикла.

        Args:
            message: сообщение пользователя
            vendor: имя LLM-вендора (perplexity, gigachat, huggingface, deepseek)
            mcp_targets: строки конфигурации транспортов MCP-серверов
            history: предыдущие реплики диалога (идут перед сообщением)
            max_tool_iterations: максимум итераций с вызовом инструментов (1..50)
            on_tool_call: вызывается после каждого результата инструмента

        Returns:
            RunResult с ответом, статусом, суммарным usage и трассой вызовов

        Raises:
            RunRequestError: некорректные параметры
            InvalidConfiguration: некорректная строка конфигурации транспорта
            VendorError: ошибка LLM-вендора (фатальна для запуска)
        """
        validate_run_request(message, vendor, mcp_targets, max_tool_iterations)
        chat_vendor = self.dispatcher.get(vendor)
        started = time.monotonic()

        state = AgentRunState()
        prompt = build_system_prompt(system_prompt, output_format, output_schema)
        if prompt:
            state.transcript.append(ChatMessage(role=ROLE_SYSTEM, content=prompt))
        state.transcript.extend(history or [])
        state.transcript.append(ChatMessage(role=ROLE_USER, content=message))

        usage: Optional[TokenUsage] = None
        used_model: Optional[str] = None
        status = RunStatus.DONE
        content = ""

        async with contextlib.AsyncExitStack() as stack:
            catalogue, routes = await self._open_clients(stack, mcp_targets)

            while not state.terminal:
                logger.info(f"Agent iteration {state.iteration + 1}/{max_tool_iterations} via {chat_vendor.name}")
                reply = await chat_vendor.complete(
                    state.transcript,
                    catalogue,
                    model=model,
                    max_tokens=max_tokens if max_tokens is not None else self.default_max_tokens,
                    temperature=temperature,
                )
                usage = combine_usage(usage, reply.usage)
                used_model = reply.model

                if not reply.directives:
                    content = reply.final_answer
                    state.transcript.append(ChatMessage(role=ROLE_ASSISTANT, content=content))
                    state.terminal = True
                    break

                if reply.prose:
                    state.last_prose = reply.prose

                results = []
                for directive in reply.directives:
                    result = await self._execute(directive, routes)
                    results.append(result)
                    if on_tool_call is not None:
                        await on_tool_call(result)

                state.tool_call_trace.append(ToolRound(iteration=state.iteration + 1, results=results))
                state.transcript.append(ChatMessage(role=ROLE_ASSISTANT, content=reply.content))
                state.transcript.append(ChatMessage(role=ROLE_USER, content=summarize_results(results)))
                state.iteration += 1

                if state.iteration >= max_tool_iterations:
                    logger.warning(f"Reached max tool iterations ({max_tool_iterations}), stopping")
                    status = RunStatus.ABORTED_ITERATION_LIMIT
                    content = state.last_prose
                    state.terminal = True

        execution_time_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Agent run finished: status={status.value}, iterations={state.iteration}, "
            f"tool calls={sum(len(r.results) for r in state.tool_call_trace)}, time={execution_time_ms}ms"
        )
        return RunResult(
            content=content,
            status=status,
            total_tool_iterations=state.iteration,
            usage=usage,
            model=used_model,
            execution_time_ms=execution_time_ms,
            tool_call_trace=state.tool_call_trace,
        )
