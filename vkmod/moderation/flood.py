# Copyright (c) 2025 sprowii
"""Антифлуд: скользящее окно сообщений на пользователя.

Хранится только в памяти процесса, после рестарта окна пустые.
"""
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from vkmod.logging_config import log
from vkmod.security.data_protection import pseudonymize_chat_id, pseudonymize_id


class FloodTracker:
    """Счётчик сообщений пользователя за последние ``time_window`` секунд."""

    def __init__(
        self,
        max_messages: int = 5,
        time_window: float = 10,
        clock: Callable[[], float] = time.time,
    ):
        self.max_messages = max_messages
        self.time_window = time_window
        self.clock = clock
        self._windows: Dict[int, Deque[float]] = {}

    def _prune(self, window: Deque[float], now: float) -> None:
        while window and now - window[0] >= self.time_window:
            window.popleft()

    def check(self, user_id: int, peer_id: Optional[int] = None) -> bool:
        """Записать сообщение и проверить лимит.

        Каждое обращение добавляет отметку времени, даже если пользователь
        уже заблокирован.

        Returns:
            True если сообщение разрешено, False при флуде
        """
        now = self.clock()
        window = self._windows.setdefault(user_id, deque())
        self._prune(window, now)
        window.append(now)

        if len(window) > self.max_messages:
            chat = pseudonymize_chat_id(peer_id) if peer_id is not None else "-"
            log.info(f"Flood detected: user={pseudonymize_id(user_id)} chat={chat} count={len(window)}")
            return False
        return True

    def message_count(self, user_id: int) -> int:
        """Количество сообщений пользователя в текущем окне."""
        window = self._windows.get(user_id)
        if not window:
            return 0
        self._prune(window, self.clock())
        return len(window)

    def reset(self, user_id: int) -> None:
        self._windows.pop(user_id, None)

    def cleanup(self) -> int:
        """Удалить пустые окна. Возвращает количество удалённых."""
        now = self.clock()
        stale = []
        for user_id, window in self._windows.items():
            self._prune(window, now)
            if not window:
                stale.append(user_id)
        for user_id in stale:
            del self._windows[user_id]
        return len(stale)
