"""Per-task todo list shared between the todos tool and observers.

The list is replaced wholesale by the todos tool. Every replacement is
published as a snapshot to each subscriber queue; a subscriber that
falls behind loses its oldest snapshot rather than blocking the tool.
"""
from __future__ import annotations

import json
import logging
import queue
import threading

from .models import TodoItem, TodoStatus

logger = logging.getLogger(__name__)


class TodoState:
    """Lock-guarded ordered todo list. Readers always get copies."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._todos: list[TodoItem] = []
        self._subscribers: list[queue.Queue[list[TodoItem]]] = []

    def get_todos(self) -> list[TodoItem]:
        with self._lock:
            return list(self._todos)

    def set_todos(self, todos: list[TodoItem]) -> list[TodoItem]:
        """Replace the list and publish the new snapshot.

        Returns the previous list.
        """
        with self._lock:
            previous = self._todos
            self._todos = list(todos)
            snapshot = list(self._todos)
            subscribers = list(self._subscribers)
        for sub in subscribers:
            self._offer(sub, snapshot)
        return previous

    def get_in_progress_task(self) -> str:
        """Label of the active task (active_form, else content), or ""."""
        with self._lock:
            for item in self._todos:
                if item.status == TodoStatus.IN_PROGRESS:
                    return item.active_form or item.content
        return ""

    def get_progress(self) -> tuple[int, int]:
        """Return (completed, total)."""
        with self._lock:
            completed = sum(
                1 for item in self._todos if item.status == TodoStatus.COMPLETED
            )
            return completed, len(self._todos)

    def to_json(self) -> str:
        with self._lock:
            return json.dumps([item.to_dict() for item in self._todos])

    def subscribe(self, maxsize: int = 16) -> queue.Queue[list[TodoItem]]:
        sub: queue.Queue[list[TodoItem]] = queue.Queue(maxsize=maxsize)
        with self._lock:
            self._subscribers.append(sub)
        return sub

    def unsubscribe(self, sub: queue.Queue[list[TodoItem]]) -> None:
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)

    @staticmethod
    def _offer(sub: queue.Queue[list[TodoItem]], snapshot: list[TodoItem]) -> None:
        while True:
            try:
                sub.put_nowait(snapshot)
                return
            except queue.Full:
                try:
                    sub.get_nowait()
                    logger.debug("Todo subscriber full, dropped oldest snapshot")
                except queue.Empty:
                    pass
