"""LLM-вендоры для агентного цикла и выбор вендора по имени"""
import base64
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import BaseModel, Field

from toolchat import config
from toolchat.mcp.models import Tool, ToolCallRequest
from toolchat.services.llm_api import (
    ROLE_SYSTEM,
    ChatMessage,
    TokenUsage,
    VendorError,
    call_chat_completion,
)
from toolchat.services.tool_directives import build_tools_system_prompt, parse_reply

logger = logging.getLogger(__name__)


class UnknownVendor(VendorError, ValueError):
    pass


class CompletionReply(BaseModel):
    content: str
    directives: List[ToolCallRequest] = Field(default_factory=list)
    usage: Optional[TokenUsage] = None
    model: str
    final_answer: str = ""
    prose: str = ""


def compose_messages(transcript: Sequence[ChatMessage], tools: Sequence[Tool]) -> List[Dict[str, str]]:
    """
    Сообщения для API: инструкции по инструментам объединяются с system prompt диалога,
    так как часть вендоров принимает только одно system-сообщение в начале.
    """
    messages = [{"role": m.role, "content": m.content} for m in transcript]
    if not tools:
        return messages

    tools_prompt = build_tools_system_prompt(tools)
    if messages and messages[0]["role"] == ROLE_SYSTEM:
        messages[0] = {"role": ROLE_SYSTEM, "content": messages[0]["content"] + "\n\n" + tools_prompt}
    else:
        messages.insert(0, {"role": ROLE_SYSTEM, "content": tools_prompt})
    return messages


class ChatVendor:
    """Вендор с OpenAI-совместимым chat completions API и Bearer-ключом"""

    def __init__(
        self,
        name: str,
        api_url: str,
        api_key: Optional[str],
        default_model: str,
        verify_ssl: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.name = name
        self.api_url = api_url
        self.api_key = api_key
        self.default_model = default_model
        self.verify_ssl = verify_ssl
        self.transport = transport

    async def _auth_headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise VendorError(f"{self.name} API key is not configured")
        return {"Authorization": f"Bearer {self.api_key}"}

    def _payload(
        self,
        messages: List[Dict[str, str]],
        model: str,
        max_tokens: int,
        temperature: Optional[float],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": model, "messages": messages}
        if max_tokens > 0:
            payload["max_tokens"] = max_tokens
        if temperature is not None:
            payload["temperature"] = temperature
        return payload

    async def complete(
        self,
        transcript: Sequence[ChatMessage],
        tool_catalogue: Sequence[Tool],
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> CompletionReply:
        model = model or self.default_model
        payload = self._payload(
            compose_messages(transcript, tool_catalogue),
            model,
            max_tokens if max_tokens is not None else config.MAX_TOKENS,
            temperature,
        )
        data = await call_chat_completion(
            self.api_url,
            await self._auth_headers(),
            payload,
            verify=self.verify_ssl,
            transport=self.transport,
        )

        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            logger.error(f"Unexpected response format from {self.name}: {str(data)[:500]}")
            raise VendorError(f"Unexpected response format from {self.name} API")

        parsed = parse_reply(content)
        return CompletionReply(
            content=content,
            directives=parsed.directives,
            usage=TokenUsage.from_payload(data.get("usage")),
            model=data.get("model") or model,
            final_answer=parsed.final if parsed.final is not None else content,
            prose=parsed.prose,
        )


class PerplexityVendor(ChatVendor):
    def __init__(self, disable_search: bool = True, **kwargs):
        super().__init__(**kwargs)
        self.disable_search = disable_search

    def _payload(self, messages, model, max_tokens, temperature):
        payload = super()._payload(messages, model, max_tokens, temperature)
        payload["disable_search"] = self.disable_search
        return payload


class GigaChatVendor(ChatVendor):
    """GigaChat: Authorization key меняется через OAuth на Access token, токен кэшируется"""

    # Токен живёт 30 минут, обновляем с запасом
    TOKEN_LIFETIME_SECONDS = 28 * 60

    def __init__(self, oauth_url: str, scope: str, **kwargs):
        super().__init__(**kwargs)
        self.oauth_url = oauth_url
        self.scope = scope
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

    async def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {await self._get_access_token()}"}

    async def _get_access_token(self) -> str:
        now = time.monotonic()
        if self._access_token and now < self._token_expires_at:
            return self._access_token
        if not self.api_key:
            raise VendorError("GIGACHAT_API_KEY is not configured")

        logger.debug("Requesting new GigaChat access token")
        credentials = base64.b64encode(self.api_key.encode("utf-8")).decode("ascii")
        headers = {
            "Accept": "application/json",
            "RqUID": str(uuid.uuid4()),
            "Authorization": f"Basic {credentials}",
        }
        try:
            async with httpx.AsyncClient(
                timeout=config.LLM_HTTP_TIMEOUT, verify=self.verify_ssl, transport=self.transport
            ) as client:
                response = await client.post(self.oauth_url, headers=headers, data={"scope": self.scope})
        except httpx.RequestError as e:
            logger.error(f"GigaChat OAuth request error: {e}")
            raise VendorError(f"Error requesting GigaChat access token: {e}") from e

        if response.status_code == 401:
            raise VendorError("Invalid GigaChat authorization key. Check GIGACHAT_API_KEY")
        if not response.is_success:
            logger.error(f"GigaChat OAuth HTTP error: {response.status_code} - {response.text[:500]}")
            raise VendorError(f"Error requesting GigaChat access token (HTTP {response.status_code})")

        token = response.json().get("access_token")
        if not token:
            raise VendorError("GigaChat OAuth response has no access_token")
        self._access_token = token
        self._token_expires_at = now + self.TOKEN_LIFETIME_SECONDS
        return token


class VendorDispatcher:
    """Сопоставляет имя вендора и его chat completion API"""

    def __init__(self, vendors: Dict[str, ChatVendor]):
        self._vendors = {name.lower(): vendor for name, vendor in vendors.items()}

    @classmethod
    def from_config(cls) -> "VendorDispatcher":
        return cls({
            "perplexity": PerplexityVendor(
                name="perplexity",
                api_url=config.PERPLEXITY_API_URL,
                api_key=config.PERPLEXITY_API_KEY,
                default_model=config.PERPLEXITY_MODEL,
            ),
            "gigachat": GigaChatVendor(
                name="gigachat",
                api_url=config.GIGACHAT_API_URL,
                api_key=config.GIGACHAT_API_KEY,
                default_model=config.GIGACHAT_MODEL,
                verify_ssl=config.GIGACHAT_VERIFY_SSL,
                oauth_url=config.GIGACHAT_OAUTH_URL,
                scope=config.GIGACHAT_SCOPE,
            ),
            "huggingface": ChatVendor(
                name="huggingface",
                api_url=config.HUGGINGFACE_API_URL,
                api_key=config.HUGGINGFACE_API_KEY,
                default_model=config.HUGGINGFACE_MODEL,
            ),
            "deepseek": ChatVendor(
                name="deepseek",
                api_url=config.DEEPSEEK_API_URL,
                api_key=config.DEEPSEEK_API_KEY,
                default_model=config.DEEPSEEK_MODEL,
            ),
        })

    def names(self) -> List[str]:
        return list(self._vendors)

    def get(self, name: str) -> ChatVendor:
        vendor = self._vendors.get((name or "").strip().lower())
        if vendor is None:
            raise UnknownVendor(f"Unknown vendor: {name}")
        return vendor

    def configured(self) -> Dict[str, bool]:
        return {name: bool(vendor.api_key) for name, vendor in self._vendors.items()}


def detect_vendor(model: str) -> str:
    """Определяет вендора по имени модели (по умолчанию perplexity)"""
    model_lower = model.lower()
    if any(m in model_lower for m in config.PERPLEXITY_MODELS):
        return "perplexity"
    if any(m.lower() in model_lower for m in config.GIGACHAT_MODELS):
        return "gigachat"
    if "deepseek" in model_lower:
        return "deepseek"
    if "/" in model_lower:
        return "huggingface"
    return "perplexity"
