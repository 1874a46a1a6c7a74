# Copyright (c) 2025 sprowii
"""Проверка прав: главный администратор, администратор, модератор.

Каждый администратор неявно является модератором. Главные администраторы
задаются в конфигурации, списки администраторов и модераторов хранятся
в StateStore и меняются командами.
"""
import secrets
from enum import IntEnum
from typing import Iterable, Optional

from vkmod.moderation.storage import StateStore


class Tier(IntEnum):
    """Уровень доступа. Больше значение - больше прав."""
    USER = 0
    MODERATOR = 1
    ADMIN = 2
    SUPER_ADMIN = 3


TIER_DENIED_MESSAGES = {
    Tier.MODERATOR: "⛔ Только администраторы и модераторы могут использовать эту команду",
    Tier.ADMIN: "⛔ Только администраторы могут использовать эту команду",
    Tier.SUPER_ADMIN: "⛔ Только главные администраторы могут использовать эту команду",
}


def _contains(ids: Iterable[int], user_id: int) -> bool:
    return any(secrets.compare_digest(str(uid), str(user_id)) for uid in ids)


class Permissions:
    def __init__(self, store: StateStore, super_admin_ids: Iterable[int]):
        self.store = store
        self.super_admin_ids = [int(uid) for uid in super_admin_ids]

    def is_super_admin(self, user_id: Optional[int]) -> bool:
        if user_id is None:
            return False
        return _contains(self.super_admin_ids, user_id)

    def is_admin(self, user_id: Optional[int]) -> bool:
        if user_id is None:
            return False
        return self.is_super_admin(user_id) or user_id in self.store.get_admins()

    def is_moderator(self, user_id: Optional[int]) -> bool:
        if user_id is None:
            return False
        return self.is_admin(user_id) or user_id in self.store.get_moderators()

    def tier(self, user_id: Optional[int]) -> Tier:
        if self.is_super_admin(user_id):
            return Tier.SUPER_ADMIN
        if self.is_admin(user_id):
            return Tier.ADMIN
        if self.is_moderator(user_id):
            return Tier.MODERATOR
        return Tier.USER

    def has_tier(self, user_id: Optional[int], required: Tier) -> bool:
        return self.tier(user_id) >= required


def denied_message(required: Tier) -> str:
    return TIER_DENIED_MESSAGES.get(required, "⛔ Недостаточно прав")
