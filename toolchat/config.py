"""Конфигурация приложения"""
import os

from dotenv import load_dotenv

load_dotenv()

# Общие настройки генерации
MAX_TOKENS = int(os.getenv("MAX_TOKENS", "256"))
DEFAULT_VENDOR = os.getenv("DEFAULT_VENDOR", "perplexity")

# Perplexity API настройки
PERPLEXITY_API_URL = os.getenv("PERPLEXITY_API_URL", "https://api.perplexity.ai/chat/completions")
PERPLEXITY_API_KEY = os.getenv("PERPLEXITY_API_KEY")
PERPLEXITY_MODEL = os.getenv("PERPLEXITY_MODEL", "sonar")
PERPLEXITY_MODELS = {"sonar", "sonar-pro", "sonar-deep-research", "sonar-reasoning", "sonar-reasoning-pro"}

# GigaChat API настройки
# GIGACHAT_API_KEY - Authorization key, по нему через OAuth получается Access token
GIGACHAT_API_URL = os.getenv("GIGACHAT_API_URL", "https://gigachat.devices.sberbank.ru/api/v1/chat/completions")
GIGACHAT_OAUTH_URL = os.getenv("GIGACHAT_OAUTH_URL", "https://ngw.devices.sberbank.ru:9443/api/v2/oauth")
GIGACHAT_SCOPE = os.getenv("GIGACHAT_SCOPE", "GIGACHAT_API_PERS")
GIGACHAT_API_KEY = os.getenv("GIGACHAT_API_KEY")
GIGACHAT_MODEL = os.getenv("GIGACHAT_MODEL", "GigaChat-2")
GIGACHAT_MODELS = {"GigaChat-2", "GigaChat-2-Pro", "GigaChat-2-Max"}
# Сертификат НУЦ Минцифры обычно не установлен в системе, поэтому проверку можно отключить
GIGACHAT_VERIFY_SSL = os.getenv("GIGACHAT_VERIFY_SSL", "false").lower() == "true"

# Hugging Face router (OpenAI-совместимый chat completions endpoint)
HUGGINGFACE_API_URL = os.getenv("HUGGINGFACE_API_URL", "https://router.huggingface.co/v1/chat/completions")
HUGGINGFACE_API_KEY = os.getenv("HUGGINGFACE_API_KEY")
HUGGINGFACE_MODEL = os.getenv("HUGGINGFACE_MODEL", "meta-llama/Llama-3.2-1B-Instruct")

# DeepSeek API настройки
DEEPSEEK_API_URL = os.getenv("DEEPSEEK_API_URL", "https://api.deepseek.com/v1/chat/completions")
DEEPSEEK_API_KEY = os.getenv("DEEPSEEK_API_KEY")
DEEPSEEK_MODEL = os.getenv("DEEPSEEK_MODEL", "deepseek-chat")

# Таймаут запросов к LLM-вендорам (секунды)
LLM_HTTP_TIMEOUT = float(os.getenv("LLM_HTTP_TIMEOUT", "60"))

# MCP настройки
#
# MCP_SERVER_URL - строка конфигурации транспорта по умолчанию:
#   http(s)://...            - HTTP JSON-RPC
#   sse+http(s)://...        - SSE-поток + POST на endpoint сервера
#   stdio://cmd arg1 arg2    - дочерний процесс, JSON-RPC построчно через stdin/stdout
MCP_SERVER_URL = os.getenv("MCP_SERVER_URL", "stdio://toolchat-mcp-server")
MCP_PROTOCOL_VERSION = os.getenv("MCP_PROTOCOL_VERSION", "2025-03-26")
MCP_CLIENT_NAME = os.getenv("MCP_CLIENT_NAME", "toolchat")
MCP_CLIENT_VERSION = os.getenv("MCP_CLIENT_VERSION", "1.0.0")
MCP_HTTP_TIMEOUT = float(os.getenv("MCP_HTTP_TIMEOUT", "90"))
MCP_SSE_CONNECT_TIMEOUT = float(os.getenv("MCP_SSE_CONNECT_TIMEOUT", "30"))
MCP_PROCESS_GRACE_SECONDS = float(os.getenv("MCP_PROCESS_GRACE_SECONDS", "5"))
MCP_STDIO_SCAN_LIMIT = int(os.getenv("MCP_STDIO_SCAN_LIMIT", "100"))

# Ограничения агентного цикла
MAX_TOOL_ITERATIONS = int(os.getenv("MAX_TOOL_ITERATIONS", "10"))
MAX_TOOL_ITERATIONS_LIMIT = 50
