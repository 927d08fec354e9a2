"""Главный файл приложения FastAPI"""
import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from toolchat.routers import chat_tools, health, mcp

# Настройка логирования
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="toolchat")

# Настройка CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Подключение роутеров
app.include_router(health.router)
app.include_router(mcp.router)
app.include_router(chat_tools.router)
logger.info(f"Chat-with-tools router registered with prefix: {chat_tools.router.prefix}")


def run() -> None:
    uvicorn.run("toolchat.main:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
