# Copyright (c) 2025 sprowii
"""Модели данных для системы модерации."""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional
import time
import uuid


class OriginKind(str, Enum):
    """Источник действия модерации."""
    DIRECT = "direct"          # Команда пользователя
    AUTOMATIC = "automatic"    # Антифлуд, эскалация варнов
    REPLAYED = "replayed"      # Повтор действия в другой объединённой беседе


@dataclass(frozen=True)
class Origin:
    """Метка команды, по которой синхронизатор отличает повторы.

    Повторённые действия не уведомляют и никогда не синхронизируются снова.
    """
    kind: OriginKind = OriginKind.DIRECT
    from_peer: Optional[int] = None

    @classmethod
    def direct(cls) -> "Origin":
        return cls(OriginKind.DIRECT)

    @classmethod
    def automatic(cls) -> "Origin":
        return cls(OriginKind.AUTOMATIC)

    @classmethod
    def replayed(cls, from_peer: int) -> "Origin":
        return cls(OriginKind.REPLAYED, from_peer)

    @property
    def is_replay(self) -> bool:
        return self.kind is OriginKind.REPLAYED

    @property
    def is_trusted(self) -> bool:
        """Внутренние вызовы не проходят проверку прав."""
        return self.kind is not OriginKind.DIRECT


DIRECT = Origin.direct()


@dataclass
class UserStats:
    """Статистика участника в конкретной беседе."""
    join_date: Optional[float] = None
    message_count: int = 0
    last_message: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserStats":
        return cls(
            join_date=data.get("join_date"),
            message_count=int(data.get("message_count") or 0),
            last_message=data.get("last_message"),
        )


@dataclass
class ActionResult:
    """Результат выполнения действия модерации."""
    applied: bool
    message: str = ""
    duration: int = 0
    warn_count: int = 0
    escalated: bool = False
    error: bool = False  # состояние не удалось сохранить


@dataclass
class ModAction:
    """Действие модерации для лога."""
    id: str
    chat_id: int
    action_type: str  # mute, unmute, ban, unban, kick, warn, unwarn, nickname, delete, filter
    target_user_id: int
    admin_id: Optional[int]  # None для автоматических действий
    reason: str
    timestamp: float
    auto: bool = False

    @classmethod
    def create(
        cls,
        chat_id: int,
        action_type: str,
        target_user_id: int,
        reason: str,
        admin_id: Optional[int] = None,
        auto: bool = False,
        timestamp: Optional[float] = None
    ) -> "ModAction":
        """Создать действие с автоматическим ID и timestamp."""
        return cls(
            id=str(uuid.uuid4()),
            chat_id=chat_id,
            action_type=action_type,
            target_user_id=target_user_id,
            admin_id=admin_id,
            reason=reason,
            timestamp=time.time() if timestamp is None else timestamp,
            auto=auto
        )
