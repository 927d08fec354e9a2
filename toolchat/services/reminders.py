"""
Сервис напоминаний - минимальное хранилище в памяти процесса для демонстрации MCP.
Переиспользуется демонстрационным MCP-сервером (toolchat/mcp/server.py).
"""
from __future__ import annotations

import itertools
import logging
from typing import Any

logger = logging.getLogger(__name__)

STATUS_ACTIVE = "active"
STATUS_DONE = "done"


class ReminderStore:
    def __init__(self) -> None:
        self._items: list[dict[str, Any]] = []
        self._ids = itertools.count(1)

    def add(self, text: str, status: str = STATUS_ACTIVE) -> dict[str, Any]:
        if not text or not text.strip():
            raise ValueError("Reminder text must not be empty")
        item = {"id": next(self._ids), "text": text.strip(), "status": status}
        self._items.append(item)
        logger.debug("reminder added: %s", item)
        return dict(item)

    def list(self, status: str | None = None) -> list[dict[str, Any]]:
        items = [dict(item) for item in self._items if status is None or item["status"] == status]
        logger.debug("reminders listed, status=%s, returned %s items", status, len(items))
        return items

    def complete(self, reminder_id: int) -> dict[str, Any]:
        for item in self._items:
            if item["id"] == reminder_id:
                item["status"] = STATUS_DONE
                return dict(item)
        raise KeyError(f"Reminder {reminder_id} not found")
