# Copyright (c) 2025 sprowii
"""Периодическое снятие истёкших мутов."""
import time
from typing import Callable, List, Optional

from vkmod.logging_config import log
from vkmod.moderation.storage import StateStore, StorageError
from vkmod.security.data_protection import pseudonymize_id
from vkmod.vk.api import VkApi


class ExpirySweeper:
    """Снимает истёкшие муты и объявляет об этом во всех объединённых беседах.

    Запускается из цикла событий между запросами Long Poll не чаще, чем
    раз в ``interval`` секунд.
    """

    def __init__(
        self,
        store: StateStore,
        api: VkApi,
        interval: float = 10.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.api = api
        self.interval = interval
        self.clock = clock
        self._last_run: Optional[float] = None

    def is_due(self) -> bool:
        return self._last_run is None or self.clock() - self._last_run >= self.interval

    def maybe_run(self) -> List[int]:
        if not self.is_due():
            return []
        return self.run()

    def run(self) -> List[int]:
        now = self.clock()
        self._last_run = now
        try:
            expired = self.store.pop_expired_mutes(now)
        except StorageError as exc:
            log.error(f"Не удалось снять истёкшие муты: {exc}")
            return []

        if not expired:
            return []

        chats = self.store.get_unified_chats()
        for user_id in expired:
            log.info(f"Mute expired: user={pseudonymize_id(user_id)}")
            mention = self.api.get_user_mention(user_id)
            for peer_id in chats:
                self.api.send_message(peer_id, f"🔊 У пользователя {mention} закончился мут.")
        return expired
