# Copyright (c) 2025 sprowii
"""Модуль модерации объединённых бесед VK.

Компоненты:
- ModerationEngine: действия модерации и проверка сообщений
- CrossChatSynchronizer: повтор действий в объединённых беседах
- ExpirySweeper: снятие истёкших мутов
- CommandRouter: разбор команд и определение цели
- StateStore: таблицы состояния в Redis
- FloodTracker, ContentFilter, WarnSystem, Permissions, ModLogger
"""

from vkmod.moderation.commands import CommandRouter, CommandTarget, parse_command, parse_user_token
from vkmod.moderation.content_filter import ContentFilter, FilterCheckResult
from vkmod.moderation.engine import ModerationEngine
from vkmod.moderation.flood import FloodTracker
from vkmod.moderation.logger import ModLogger, format_mod_log_entry
from vkmod.moderation.models import ActionResult, ModAction, Origin, OriginKind, UserStats
from vkmod.moderation.permissions import Permissions, Tier
from vkmod.moderation.storage import StateStore, StorageError, create_redis_client
from vkmod.moderation.sweeper import ExpirySweeper
from vkmod.moderation.sync import CrossChatSynchronizer
from vkmod.moderation.warns import WarnEscalation, WarnResult, WarnSystem

__all__ = [
    # Engine
    "ModerationEngine",
    "CrossChatSynchronizer",
    "ExpirySweeper",
    # Commands
    "CommandRouter",
    "CommandTarget",
    "parse_command",
    "parse_user_token",
    # Models
    "ActionResult",
    "ModAction",
    "Origin",
    "OriginKind",
    "UserStats",
    # Storage
    "StateStore",
    "StorageError",
    "create_redis_client",
    # Policies
    "FloodTracker",
    "ContentFilter",
    "FilterCheckResult",
    "Permissions",
    "Tier",
    "WarnSystem",
    "WarnResult",
    "WarnEscalation",
    # Logger
    "ModLogger",
    "format_mod_log_entry",
]
