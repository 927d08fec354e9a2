"""Роутер для health check"""
from fastapi import APIRouter

from toolchat.config import DEFAULT_VENDOR, MCP_SERVER_URL
from toolchat.routers.chat_tools import orchestrator

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "ok",
        "default_vendor": DEFAULT_VENDOR,
        "vendors_configured": orchestrator.dispatcher.configured(),
        "mcp_server_url": MCP_SERVER_URL,
    }
