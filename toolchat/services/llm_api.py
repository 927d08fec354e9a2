"""Общий вызов OpenAI-совместимых chat completions API (Perplexity, GigaChat, Hugging Face, DeepSeek)"""
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from toolchat.config import LLM_HTTP_TIMEOUT

logger = logging.getLogger(__name__)

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


class VendorError(Exception):
    """Ошибка обращения к LLM-вендору. Для агентного цикла фатальна."""


class ChatMessage(BaseModel):
    role: str
    content: str


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: Optional[float] = None

    @classmethod
    def from_payload(cls, usage: Any) -> Optional["TokenUsage"]:
        if not isinstance(usage, dict):
            return None
        cost = usage.get("cost")
        # Perplexity присылает стоимость объектом {"total_cost": ...}
        if isinstance(cost, dict):
            cost = cost.get("total_cost")
        prompt_tokens = int(usage.get("prompt_tokens") or 0)
        completion_tokens = int(usage.get("completion_tokens") or 0)
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=int(usage.get("total_tokens") or prompt_tokens + completion_tokens),
            cost=float(cost) if isinstance(cost, (int, float)) else None,
        )


def combine_usage(first: Optional[TokenUsage], second: Optional[TokenUsage]) -> Optional[TokenUsage]:
    """Суммирует использование токенов и стоимость двух вызовов"""
    if first is None:
        return second
    if second is None:
        return first
    cost = None
    if first.cost is not None or second.cost is not None:
        cost = (first.cost or 0.0) + (second.cost or 0.0)
    return TokenUsage(
        prompt_tokens=first.prompt_tokens + second.prompt_tokens,
        completion_tokens=first.completion_tokens + second.completion_tokens,
        total_tokens=first.total_tokens + second.total_tokens,
        cost=cost,
    )


async def call_chat_completion(
    api_url: str,
    headers: Dict[str, str],
    payload: Dict[str, Any],
    timeout: float = LLM_HTTP_TIMEOUT,
    verify: bool = True,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """
    Вызов chat completions API

    Args:
        api_url: URL endpoint'а chat/completions
        headers: заголовки (авторизация)
        payload: тело запроса {"model", "messages", ...}
        timeout: таймаут запроса в секундах
        verify: проверять ли SSL-сертификат
        transport: подмена транспорта httpx (для тестов)

    Returns:
        Dict с ответом от API
    """
    request_headers = {"Content-Type": "application/json", **headers}
    logger.info(f"Chat completion request to {api_url}: model={payload.get('model')}, {len(payload.get('messages', []))} messages")

    try:
        async with httpx.AsyncClient(timeout=timeout, verify=verify, transport=transport) as client:
            response = await client.post(api_url, headers=request_headers, json=payload)
            response.raise_for_status()
            return response.json()
    except httpx.HTTPStatusError as e:
        logger.error(f"LLM API HTTP error: {e.response.status_code} - {e.response.text[:500]}")
        raise VendorError(f"HTTP {e.response.status_code}: {e.response.text[:200]}") from e
    except httpx.RequestError as e:
        logger.error(f"LLM API request error: {str(e)}")
        raise VendorError(f"Request error: {str(e)}") from e
    except ValueError as e:
        logger.error(f"LLM API returned invalid JSON: {str(e)}")
        raise VendorError("Unexpected response format from LLM API") from e
