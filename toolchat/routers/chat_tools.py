"""Роутер чата с MCP-инструментами: LLM сама решает, какие инструменты вызвать"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from toolchat.config import DEFAULT_VENDOR, MAX_TOOL_ITERATIONS, MCP_SERVER_URL
from toolchat.mcp.errors import InvalidConfiguration
from toolchat.services.llm_api import ChatMessage, VendorError
from toolchat.services.tool_orchestrator import RunRequestError, RunResult, ToolCallOrchestrator
from toolchat.services.vendors import UnknownVendor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat-with-tools", tags=["chat-with-tools"])

orchestrator = ToolCallOrchestrator()


class ChatWithToolsRequest(BaseModel):
    message: str
    vendor: str = DEFAULT_VENDOR
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    system_prompt: Optional[str] = None
    output_format: Optional[str] = None
    output_schema: Optional[str] = None
    # Если не указаны, используется MCP_SERVER_URL
    mcp_server_urls: Optional[List[str]] = None
    max_tool_iterations: int = MAX_TOOL_ITERATIONS
    history: Optional[List[ChatMessage]] = None


def _result_to_response(result: RunResult) -> Dict[str, Any]:
    usage = None
    if result.usage is not None:
        usage = {
            "promptTokens": result.usage.prompt_tokens,
            "completionTokens": result.usage.completion_tokens,
            "totalTokens": result.usage.total_tokens,
            "cost": result.usage.cost,
        }
    tool_calls = [
        {
            "toolName": call.tool_name,
            "arguments": call.arguments,
            "result": call.output,
            "success": call.success,
            "error": call.error,
            "serverUrl": call.server_identity,
        }
        for call in result.tool_calls
    ]
    return {
        "content": result.content,
        "model": result.model,
        "usage": usage,
        "toolCalls": tool_calls,
        "toolCallTrace": [
            {"iteration": round_.iteration, "toolNames": [call.tool_name for call in round_.results]}
            for round_ in result.tool_call_trace
        ],
        "totalToolIterations": result.total_tool_iterations,
        "status": result.status.value,
        "executionTimeMs": result.execution_time_ms,
    }


@router.post("")
async def chat_with_tools(request: ChatWithToolsRequest):
    """
    Агентный цикл: модель вызывает MCP-инструменты, пока не даст финальный ответ

    Args:
        request: сообщение, вендор, MCP-серверы и ограничения цикла

    Returns:
        Ответ модели, usage, вызовы инструментов и число итераций
    """
    mcp_targets = request.mcp_server_urls if request.mcp_server_urls is not None else [MCP_SERVER_URL]
    try:
        logger.info(
            f"Received chat-with-tools request: vendor={request.vendor}, "
            f"servers={mcp_targets}, max iterations={request.max_tool_iterations}"
        )
        result = await orchestrator.run(
            message=request.message,
            vendor=request.vendor,
            mcp_targets=mcp_targets,
            model=request.model,
            max_tokens=request.max_tokens,
            temperature=request.temperature,
            system_prompt=request.system_prompt,
            output_format=request.output_format,
            output_schema=request.output_schema,
            history=request.history,
            max_tool_iterations=request.max_tool_iterations,
        )
        return _result_to_response(result)

    except HTTPException:
        raise
    except (RunRequestError, InvalidConfiguration, UnknownVendor) as e:
        logger.error(f"Invalid chat-with-tools request: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except VendorError as e:
        logger.error(f"LLM vendor error: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail=f"LLM API error: {e}")
    except Exception as e:
        logger.error(f"Unexpected error in chat-with-tools: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")
