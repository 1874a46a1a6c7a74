# Copyright (c) 2025 sprowii
"""Система предупреждений (warns).

Счётчик ведётся отдельно для каждой беседы. При достижении
``max_warnings`` пользователь автоматически получает мут, а счётчик
обнуляется.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from vkmod.logging_config import log
from vkmod.moderation.storage import StateStore
from vkmod.security.data_protection import pseudonymize_chat_id, pseudonymize_id


class WarnEscalation(Enum):
    """Результат эскалации после добавления предупреждения."""
    NONE = "none"
    MUTE = "mute"


@dataclass
class WarnResult:
    """Результат добавления предупреждения.

    Attributes:
        total_warns: Количество предупреждений после добавления (до обнуления)
        max_warns: Порог автоматического мута
        escalation: Тип эскалации
    """
    total_warns: int
    max_warns: int
    escalation: WarnEscalation


class WarnSystem:
    def __init__(self, store: StateStore, max_warnings: int = 3):
        self.store = store
        self.max_warnings = max_warnings

    def add_warn(self, peer_id: int, user_id: int) -> WarnResult:
        """Добавить предупреждение и обнулить счётчик при достижении порога.

        Увеличение и обнуление сохраняются одной записью.
        """
        total = self.store.increment_warn(peer_id, user_id, reset_at=self.max_warnings)

        escalation = WarnEscalation.NONE
        if total >= self.max_warnings:
            escalation = WarnEscalation.MUTE

        log.info(
            f"Warn added: chat={pseudonymize_chat_id(peer_id)}, user={pseudonymize_id(user_id)}, "
            f"total={total}, escalation={escalation.value}"
        )
        return WarnResult(total_warns=total, max_warns=self.max_warnings, escalation=escalation)

    def remove_warn(self, peer_id: int, user_id: int) -> Optional[int]:
        """Снять одно предупреждение.

        Returns:
            Оставшееся количество или None если предупреждений не было
        """
        remaining = self.store.decrement_warn(peer_id, user_id)
        if remaining is not None:
            log.info(
                f"Warn removed: chat={pseudonymize_chat_id(peer_id)}, user={pseudonymize_id(user_id)}, "
                f"remaining={remaining}"
            )
        return remaining

    def get_warn_count(self, peer_id: int, user_id: int) -> int:
        return self.store.get_warn_count(peer_id, user_id)


def format_warn_message(mention: str, result: WarnResult, reason: str = "") -> str:
    reason_text = f" Причина: {reason}" if reason else ""
    return (
        f"⚠️ Пользователь {mention} получил предупреждение "
        f"({result.total_warns}/{result.max_warns}).{reason_text}"
    )
