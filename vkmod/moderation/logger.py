# Copyright (c) 2025 sprowii
"""Логирование действий модерации.

В Redis сохраняются реальные ID (для команды просмотра лога), в логи
приложения попадают только псевдонимы.
"""
import time
from datetime import datetime
from typing import Callable, Optional

from vkmod.logging_config import log
from vkmod.moderation.models import ModAction
from vkmod.moderation.storage import StateStore, StorageError
from vkmod.security.data_protection import safe_log_action

ACTION_ICONS = {
    "warn": "⚠️",
    "unwarn": "✅",
    "mute": "🔇",
    "unmute": "🔊",
    "ban": "⛔",
    "unban": "✅",
    "kick": "👢",
    "nickname": "👤",
    "delete": "🗑",
    "filter": "🚫",
}


class ModLogger:
    """Запись действий модерации в Redis и в лог приложения."""

    def __init__(self, store: StateStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    def log_action(self, action: ModAction) -> None:
        """Записать действие. Ошибка записи лога не прерывает действие."""
        log.info(safe_log_action(
            action.action_type,
            action.target_user_id,
            action.chat_id,
            action.admin_id if not action.auto else None,
            action.reason,
        ))
        try:
            self.store.save_mod_action(action)
        except StorageError as exc:
            log.error(f"Failed to save mod action to Redis: {exc}")

    def record(
        self,
        chat_id: int,
        action_type: str,
        target_user_id: int,
        reason: str = "",
        admin_id: Optional[int] = None,
        auto: bool = False
    ) -> ModAction:
        """Создать ModAction и записать его."""
        action = ModAction.create(
            chat_id=chat_id,
            action_type=action_type,
            target_user_id=target_user_id,
            reason=reason,
            admin_id=admin_id,
            auto=auto,
            timestamp=self.clock(),
        )
        self.log_action(action)
        return action


def format_mod_log_entry(action: ModAction) -> str:
    """Форматировать запись лога модерации для отображения."""
    icon = ACTION_ICONS.get(action.action_type, "📋")
    time_str = datetime.fromtimestamp(action.timestamp).strftime("%d.%m %H:%M")
    admin_str = "🤖" if action.auto else f"👮{action.admin_id}"

    result = f"{icon} [{time_str}] 👤{action.target_user_id} {admin_str}"
    if action.reason:
        reason = action.reason[:50] + "..." if len(action.reason) > 50 else action.reason
        result += f"\n   └ {reason}"
    return result
