# Copyright (c) 2025 sprowii
"""Движок модерации: действия mute/unmute/ban/unban/kick/warn/unwarn/nickname.

Каждое действие проверяет права, меняет состояние в StateStore, уведомляет
беседу, пишет лог модерации и, если это не повтор, передаёт действие
синхронизатору объединённых бесед.
"""
import time
from typing import Any, Callable, Dict, Optional

from vkmod.config import BotConfig
from vkmod.logging_config import log
from vkmod.moderation.content_filter import ContentFilter
from vkmod.moderation.flood import FloodTracker
from vkmod.moderation.logger import ModLogger
from vkmod.moderation.models import DIRECT, ActionResult, Origin
from vkmod.moderation.permissions import Permissions, Tier, denied_message
from vkmod.moderation.storage import StateStore, StorageError
from vkmod.moderation.sync import CrossChatSynchronizer
from vkmod.moderation.warns import WarnEscalation, WarnSystem, format_warn_message
from vkmod.security.data_protection import pseudonymize_id
from vkmod.utils.text import format_duration
from vkmod.vk.api import VkApi

STORAGE_FAILED_MESSAGE = "⚠️ Не удалось сохранить изменения, действие не выполнено"
ADMIN_PROTECTED_MESSAGE = "⛔ Нельзя заглушить администратора"


class ModerationEngine:
    """Центральная точка входа для всех действий модерации."""

    def __init__(
        self,
        config: BotConfig,
        store: StateStore,
        api: VkApi,
        permissions: Permissions,
        flood: Optional[FloodTracker] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.store = store
        self.api = api
        self.permissions = permissions
        self.clock = clock
        self.flood = flood or FloodTracker(config.flood_max_messages, config.flood_time_window, clock)
        self.content_filter = ContentFilter(config)
        self.warns = WarnSystem(store, config.max_warnings)
        self.mod_logger = ModLogger(store, clock)
        self.synchronizer = CrossChatSynchronizer(self)

    # ========================================================================
    # HELPERS
    # ========================================================================

    def mention(self, user_id: int) -> str:
        return self.api.get_user_mention(user_id)

    def notify(self, peer_id: int, text: str, origin: Origin = DIRECT) -> None:
        """Уведомление в беседу. Повторы молчат, за них пишет синхронизатор."""
        if origin.is_replay:
            return
        self.api.send_message(peer_id, text)

    def _authorize(self, peer_id: int, admin_id: Optional[int], required: Tier, origin: Origin) -> bool:
        if origin.is_trusted:
            return True
        if self.permissions.has_tier(admin_id, required):
            return True
        log.info(f"Access denied: user={pseudonymize_id(admin_id)} required={required.name}")
        self.notify(peer_id, denied_message(required), origin)
        return False

    def _storage_failed(self, peer_id: int, action: str, origin: Origin, exc: StorageError) -> ActionResult:
        log.error(f"Действие {action} не выполнено: {exc}")
        self.notify(peer_id, STORAGE_FAILED_MESSAGE, origin)
        return ActionResult(applied=False, error=True)

    def _propagate(self, action: str, user_id: int, peer_id: int, origin: Origin, **params: Any) -> None:
        if origin.is_replay or not self.config.unified_mode:
            return
        self.synchronizer.propagate(action, user_id, peer_id, origin, **params)

    def _record(self, peer_id: int, action: str, user_id: int, reason: str,
                admin_id: Optional[int], origin: Origin) -> None:
        if origin.is_replay:
            reason = f"{reason} (синхронизация из {origin.from_peer})".strip()
        self.mod_logger.record(
            chat_id=peer_id,
            action_type=action,
            target_user_id=user_id,
            reason=reason,
            admin_id=admin_id,
            auto=origin.is_trusted,
        )

    # ========================================================================
    # MUTE
    # ========================================================================

    def mute(
        self,
        peer_id: int,
        user_id: int,
        duration: Optional[int] = None,
        admin_id: Optional[int] = None,
        origin: Origin = DIRECT,
    ) -> ActionResult:
        if not self._authorize(peer_id, admin_id, Tier.MODERATOR, origin):
            return ActionResult(applied=False)

        if self.permissions.is_admin(user_id):
            self.notify(peer_id, ADMIN_PROTECTED_MESSAGE, origin)
            return ActionResult(applied=False)

        if not duration or duration <= 0:
            duration = self.config.flood_mute_duration

        try:
            self.store.set_mute(user_id, self.clock() + duration)
        except StorageError as exc:
            return self._storage_failed(peer_id, "mute", origin, exc)

        self._record(peer_id, "mute", user_id, format_duration(duration), admin_id, origin)

        if not origin.is_replay:
            self.notify(peer_id, f"🔇 Пользователь {self.mention(user_id)} заглушен на {format_duration(duration)}")
            self._propagate("mute", user_id, peer_id, origin, duration=duration)

        return ActionResult(applied=True, duration=duration)

    def unmute(
        self,
        peer_id: int,
        user_id: int,
        admin_id: Optional[int] = None,
        origin: Origin = DIRECT,
    ) -> ActionResult:
        if not self._authorize(peer_id, admin_id, Tier.MODERATOR, origin):
            return ActionResult(applied=False)

        try:
            removed = self.store.remove_mute(user_id)
        except StorageError as exc:
            return self._storage_failed(peer_id, "unmute", origin, exc)

        if not removed:
            self.notify(
                peer_id,
                f"❌ Пользователь {self.mention(user_id)} не находится в списке заглушенных",
                origin,
            )
            return ActionResult(applied=False)

        self._record(peer_id, "unmute", user_id, "", admin_id, origin)

        if not origin.is_replay:
            self.notify(peer_id, f"🔊 С пользователя {self.mention(user_id)} снята заглушка")
            self._propagate("unmute", user_id, peer_id, origin)

        return ActionResult(applied=True)

    # ========================================================================
    # BAN / KICK
    # ========================================================================

    def ban(
        self,
        peer_id: int,
        user_id: int,
        admin_id: Optional[int] = None,
        origin: Origin = DIRECT,
    ) -> ActionResult:
        if not self._authorize(peer_id, admin_id, Tier.MODERATOR, origin):
            return ActionResult(applied=False)

        try:
            added = self.store.add_ban(user_id)
        except StorageError as exc:
            return self._storage_failed(peer_id, "ban", origin, exc)

        # Бан глобальный: при повторе запись уже есть, но исключить из
        # этой беседы всё равно нужно.
        if not added and not origin.is_replay:
            self.notify(peer_id, f"❌ Пользователь {self.mention(user_id)} уже заблокирован")
            return ActionResult(applied=False)

        self.api.remove_chat_user(peer_id, user_id)
        self._record(peer_id, "ban", user_id, "", admin_id, origin)

        if not origin.is_replay:
            self.notify(peer_id, f"⛔ Пользователь {self.mention(user_id)} заблокирован в беседе")
            self._propagate("ban", user_id, peer_id, origin)

        return ActionResult(applied=True)

    def unban(
        self,
        peer_id: int,
        user_id: int,
        admin_id: Optional[int] = None,
        origin: Origin = DIRECT,
    ) -> ActionResult:
        if not self._authorize(peer_id, admin_id, Tier.MODERATOR, origin):
            return ActionResult(applied=False)

        try:
            removed = self.store.remove_ban(user_id)
        except StorageError as exc:
            return self._storage_failed(peer_id, "unban", origin, exc)

        if not removed:
            self.notify(
                peer_id,
                f"❌ Пользователь {self.mention(user_id)} не находится в списке заблокированных",
                origin,
            )
            return ActionResult(applied=False)

        self._record(peer_id, "unban", user_id, "", admin_id, origin)

        if not origin.is_replay:
            self.notify(peer_id, f"✅ С пользователя {self.mention(user_id)} снята блокировка")
            self._propagate("unban", user_id, peer_id, origin)

        return ActionResult(applied=True)

    def kick(
        self,
        peer_id: int,
        user_id: int,
        admin_id: Optional[int] = None,
        origin: Origin = DIRECT,
    ) -> ActionResult:
        if not self._authorize(peer_id, admin_id, Tier.MODERATOR, origin):
            return ActionResult(applied=False)

        duration = self.config.kick_duration
        try:
            self.store.set_kick(user_id, self.clock() + duration)
        except StorageError as exc:
            return self._storage_failed(peer_id, "kick", origin, exc)

        self.api.remove_chat_user(peer_id, user_id)
        self._record(peer_id, "kick", user_id, format_duration(duration), admin_id, origin)

        if not origin.is_replay:
            self.notify(
                peer_id,
                f"👢 Пользователь {self.mention(user_id)} исключен из беседы на {format_duration(duration)}",
            )
            self._propagate("kick", user_id, peer_id, origin)

        return ActionResult(applied=True, duration=duration)

    # ========================================================================
    # WARNS
    # ========================================================================

    def warn(
        self,
        peer_id: int,
        user_id: int,
        reason: str = "",
        admin_id: Optional[int] = None,
        origin: Origin = DIRECT,
    ) -> ActionResult:
        if not self._authorize(peer_id, admin_id, Tier.MODERATOR, origin):
            return ActionResult(applied=False)

        try:
            result = self.warns.add_warn(peer_id, user_id)
        except StorageError as exc:
            return self._storage_failed(peer_id, "warn", origin, exc)

        self._record(peer_id, "warn", user_id, reason, admin_id, origin)
        threshold_reached = result.escalation is WarnEscalation.MUTE

        # При повторе счётчик обнуляется молча: мут приходит отдельным действием
        if origin.is_replay:
            return ActionResult(applied=True, warn_count=result.total_warns)

        mention = self.mention(user_id)
        self.notify(peer_id, format_warn_message(mention, result, reason))

        escalated = False
        if threshold_reached:
            muted = self.mute(peer_id, user_id, self.config.flood_mute_duration, origin=Origin.automatic())
            escalated = muted.applied
            if escalated:
                self.notify(peer_id, f"🔇 Пользователь {mention} заглушен за превышение количества предупреждений")

        self._propagate("warn", user_id, peer_id, origin, reason=reason)
        return ActionResult(applied=True, warn_count=result.total_warns, escalated=escalated)

    def unwarn(
        self,
        peer_id: int,
        user_id: int,
        admin_id: Optional[int] = None,
        origin: Origin = DIRECT,
    ) -> ActionResult:
        if not self._authorize(peer_id, admin_id, Tier.MODERATOR, origin):
            return ActionResult(applied=False)

        try:
            remaining = self.warns.remove_warn(peer_id, user_id)
        except StorageError as exc:
            return self._storage_failed(peer_id, "unwarn", origin, exc)

        if remaining is None:
            self.notify(peer_id, f"❌ У пользователя {self.mention(user_id)} нет предупреждений", origin)
            return ActionResult(applied=False)

        self._record(peer_id, "unwarn", user_id, "", admin_id, origin)

        if not origin.is_replay:
            self.notify(
                peer_id,
                f"✅ С пользователя {self.mention(user_id)} снято предупреждение "
                f"(осталось: {remaining}/{self.config.max_warnings})",
            )
            self._propagate("unwarn", user_id, peer_id, origin)

        return ActionResult(applied=True, warn_count=remaining)

    # ========================================================================
    # NICKNAME
    # ========================================================================

    def set_nickname(
        self,
        peer_id: int,
        user_id: int,
        nickname: str,
        admin_id: Optional[int] = None,
        origin: Origin = DIRECT,
    ) -> ActionResult:
        if not self._authorize(peer_id, admin_id, Tier.ADMIN, origin):
            return ActionResult(applied=False)

        try:
            self.store.set_nickname(peer_id, user_id, nickname)
        except StorageError as exc:
            return self._storage_failed(peer_id, "nickname", origin, exc)

        self._record(peer_id, "nickname", user_id, nickname, admin_id, origin)

        if not origin.is_replay:
            self.notify(peer_id, f"👤 Пользователю {self.mention(user_id)} установлен никнейм \"{nickname}\"")
            self._propagate("nickname", user_id, peer_id, origin, nickname=nickname, admin_id=admin_id)

        return ActionResult(applied=True)

    # ========================================================================
    # MESSAGE SCREENING
    # ========================================================================

    def _delete(self, message: Dict[str, Any]) -> None:
        cmid = message.get("conversation_message_id")
        if cmid:
            self.api.delete_message(message["peer_id"], cmid)

    def screen_message(self, message: Dict[str, Any]) -> bool:
        """Проверка сообщения обычного участника.

        Returns:
            True если сообщение удалено и дальше не обрабатывается
        """
        peer_id = message["peer_id"]
        user_id = message["from_id"]

        if self.store.is_muted(user_id):
            self._delete(message)
            return True

        if not self.flood.check(user_id, peer_id):
            self._delete(message)
            self.mute(peer_id, user_id, self.config.flood_mute_duration, origin=Origin.automatic())
            return True

        result = self.content_filter.check(message)
        if result.is_filtered:
            self._delete(message)
            self.mod_logger.record(
                chat_id=peer_id,
                action_type="filter",
                target_user_id=user_id,
                reason=result.matched_word or result.reason or "",
                auto=True,
            )
            self.api.send_message(peer_id, f"{result.notice}, {self.mention(user_id)}")
            return True

        return False

    def enforce_on_join(self, peer_id: int, user_id: int) -> bool:
        """Повторно исключить забаненного или кикнутого пользователя.

        Returns:
            True если пользователь исключён
        """
        if self.store.is_banned(user_id):
            self.api.remove_chat_user(peer_id, user_id)
            self.api.send_message(
                peer_id, f"⛔ Пользователь {self.mention(user_id)} заблокирован и был исключён из беседы"
            )
            return True

        if self.store.is_kicked(user_id):
            remaining = int(self.store.get_kicks().get(user_id, 0) - self.clock())
            self.api.remove_chat_user(peer_id, user_id)
            self.api.send_message(
                peer_id,
                f"👢 Пользователь {self.mention(user_id)} исключён ещё на {format_duration(max(remaining, 1))}",
            )
            return True

        return False
