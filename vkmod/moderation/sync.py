# Copyright (c) 2025 sprowii
"""Синхронизация действий между объединёнными беседами.

Действие, выполненное в одной беседе, повторяется в каждой другой
объединённой беседе с меткой ``Origin.replayed``. Повторы не
синхронизируются снова, поэтому на одно действие приходится ровно один
проход по беседам.
"""
from typing import TYPE_CHECKING, Any, Callable, Dict

from vkmod.logging_config import log
from vkmod.moderation.models import ActionResult, Origin
from vkmod.security.data_protection import pseudonymize_chat_id, pseudonymize_id
from vkmod.utils.text import format_duration

if TYPE_CHECKING:
    from vkmod.moderation.engine import ModerationEngine


def _sync_notice(action: str, mention: str, params: Dict[str, Any]) -> str:
    if action == "mute":
        return f"🔄 Синхронизация: пользователь {mention} заглушен на {format_duration(params.get('duration', 0))}"
    if action == "unmute":
        return f"🔄 Синхронизация: с пользователя {mention} снята заглушка"
    if action == "ban":
        return f"🔄 Синхронизация: пользователь {mention} заблокирован"
    if action == "unban":
        return f"🔄 Синхронизация: с пользователя {mention} снята блокировка"
    if action == "kick":
        return f"🔄 Синхронизация: пользователь {mention} исключен"
    if action == "warn":
        reason = params.get("reason")
        reason_text = f". Причина: {reason}" if reason else ""
        return f"🔄 Синхронизация: пользователь {mention} получил предупреждение{reason_text}"
    if action == "unwarn":
        return f"🔄 Синхронизация: с пользователя {mention} снято предупреждение"
    if action == "nickname":
        return f"🔄 Синхронизация: пользователю {mention} установлен никнейм \"{params.get('nickname', '')}\""
    return f"🔄 Синхронизация: {action} для {mention}"


class CrossChatSynchronizer:
    def __init__(self, engine: "ModerationEngine"):
        self.engine = engine

    def _verb(self, action: str, user_id: int, origin: Origin, params: Dict[str, Any]) -> Callable[[int], ActionResult]:
        engine = self.engine
        verbs: Dict[str, Callable[[int], ActionResult]] = {
            "mute": lambda peer: engine.mute(peer, user_id, params.get("duration"), origin=origin),
            "unmute": lambda peer: engine.unmute(peer, user_id, origin=origin),
            "ban": lambda peer: engine.ban(peer, user_id, origin=origin),
            "unban": lambda peer: engine.unban(peer, user_id, origin=origin),
            "kick": lambda peer: engine.kick(peer, user_id, origin=origin),
            "warn": lambda peer: engine.warn(peer, user_id, params.get("reason", ""), origin=origin),
            "unwarn": lambda peer: engine.unwarn(peer, user_id, origin=origin),
            "nickname": lambda peer: engine.set_nickname(
                peer, user_id, params.get("nickname", ""), admin_id=params.get("admin_id"), origin=origin
            ),
        }
        if action not in verbs:
            raise ValueError(f"Неизвестное действие для синхронизации: {action}")
        return verbs[action]

    def propagate(self, action: str, user_id: int, origin_peer: int, origin: Origin, **params: Any) -> int:
        """Повторить действие во всех объединённых беседах, кроме исходной.

        Returns:
            Количество бесед, в которых действие повторено
        """
        if origin.is_replay:
            raise ValueError("Повтор действия не синхронизируется повторно")

        targets = [peer for peer in self.engine.store.get_unified_chats() if peer != origin_peer]
        if not targets:
            return 0

        replay = self._verb(action, user_id, Origin.replayed(origin_peer), params)
        notice = _sync_notice(action, self.engine.mention(user_id), params)

        applied = 0
        for peer_id in targets:
            try:
                result = replay(peer_id)
                if result.error:
                    continue
                self.engine.api.send_message(peer_id, notice)
                applied += 1
            except Exception as exc:
                log.error(
                    f"Ошибка синхронизации {action} для {pseudonymize_id(user_id)} "
                    f"в {pseudonymize_chat_id(peer_id)}: {exc}",
                    exc_info=True,
                )

        log.info(f"Синхронизация {action}: {applied}/{len(targets)} бесед")
        return applied
