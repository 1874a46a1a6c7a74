# Copyright (c) 2025 sprowii
"""Обработка входящих сообщений и текстовых команд.

Команды начинаются с ``!`` или ``/`` и не зависят от регистра. Цель
команды определяется в порядке: ответ на сообщение, упоминание
(``[id123|Имя]``, ``@id123``, ``id123``, числовой ID), никнейм.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from vkmod.logging_config import log
from vkmod.moderation.engine import STORAGE_FAILED_MESSAGE, ModerationEngine
from vkmod.moderation.logger import format_mod_log_entry
from vkmod.moderation.permissions import Tier, denied_message
from vkmod.moderation.storage import StorageError
from vkmod.security.data_protection import pseudonymize_chat_id, pseudonymize_id
from vkmod.utils.text import format_duration, format_timestamp

COMMAND_PREFIXES = ("!", "/")
INVITE_ACTIONS = ("chat_invite_user", "chat_invite_user_by_link")
MOD_LOG_LIMIT = 20

MENTION_PATTERNS = (
    re.compile(r"^\[id(\d+)\|[^\]]*\]$"),
    re.compile(r"^@?id(\d+)$", re.IGNORECASE),
    re.compile(r"^(\d+)$"),
)

USAGE_SUFFIX = "или ответьте на сообщение пользователя"

USAGE = {
    "mute": f"❌ Использование: !mute @упоминание [время в секундах] {USAGE_SUFFIX}",
    "unmute": f"❌ Использование: !unmute @упоминание {USAGE_SUFFIX}",
    "ban": f"❌ Использование: !ban @упоминание {USAGE_SUFFIX}",
    "unban": f"❌ Использование: !unban @упоминание {USAGE_SUFFIX}",
    "kick": f"❌ Использование: !kick @упоминание {USAGE_SUFFIX}",
    "warn": f"❌ Использование: !warn @упоминание [причина] {USAGE_SUFFIX}",
    "unwarn": f"❌ Использование: !unwarn @упоминание {USAGE_SUFFIX}",
    "nick": f"❌ Использование: !nick @упоминание [новый_никнейм] {USAGE_SUFFIX}",
    "addadmin": f"❌ Использование: !addadmin @упоминание {USAGE_SUFFIX}",
    "removeadmin": f"❌ Использование: !removeadmin @упоминание {USAGE_SUFFIX}",
    "addmoder": f"❌ Использование: /addmoder @упоминание {USAGE_SUFFIX}",
    "removemoder": f"❌ Использование: /removemoder @упоминание {USAGE_SUFFIX}",
}

DENIED = {
    "nick": "⛔ Только администраторы могут устанавливать никнеймы",
    "stats": "⛔ Только администраторы и модераторы могут просматривать статистику других пользователей",
    "unified": "⛔ Только администраторы могут просматривать список объединённых бесед",
    "addadmin": "⛔ Только главные администраторы могут добавлять новых администраторов",
    "removeadmin": "⛔ Только главные администраторы могут удалять администраторов",
    "addmoder": "⛔ Только администраторы могут добавлять модераторов",
    "removemoder": "⛔ Только администраторы могут удалять модераторов",
}

BOT_GREETING = (
    "👋 Привет всем! Я бот-модератор этой беседы. Я помогу вам управлять беседой и следить за порядком.\n\n"
    "📝 Основные команды для пользователей чата:\n"
    "• /help - список всех команд\n"
    "• /stats - просмотреть свою статистику\n"
    "• /admins - просмотреть список Администраторов беседы\n"
    "• /moders - просмотреть список Модераторов беседы\n\n"
    "Рад быть полезным! 🤖"
)

_HELP_MODERATION = (
    "--- Модерация ---\n"
    "/mute @упоминание [время] - заглушить пользователя\n"
    "/unmute @упоминание - снять заглушку\n"
    "/ban @упоминание - заблокировать пользователя\n"
    "/unban @упоминание - разблокировать пользователя\n"
    "/kick @упоминание - исключить пользователя\n"
    "/warn @упоминание [причина] - выдать предупреждение\n"
    "/unwarn @упоминание - снять предупреждение\n"
    "/stats [@упоминание] - статистика пользователя\n"
    "/modlog [@упоминание] - лог модерации беседы\n"
)

_HELP_NOTE = "Примечание: Все команды модерации также работают при ответе на сообщение пользователя."

HELP_ADMIN = (
    "📋 Доступные команды:\n\n"
    + _HELP_MODERATION
    + "/nick @упоминание [никнейм] - установить никнейм\n\n"
    "--- Администрирование ---\n"
    "/unite - включить объединение чатов\n"
    "/separate - отключить объединение чатов\n"
    "/unified - список объединённых бесед\n"
    "/addadmin @упоминание - добавить администратора\n"
    "/removeadmin @упоминание - удалить администратора\n"
    "/admins - список администраторов\n"
    "/addmoder @упоминание - добавить модератора\n"
    "/removemoder @упоминание - удалить модератора\n"
    "/moders - список модераторов\n\n"
    + _HELP_NOTE
)

HELP_MODERATOR = (
    "📋 Доступные команды:\n\n"
    + _HELP_MODERATION
    + "/admins - список администраторов\n"
    "/moders - список модераторов\n\n"
    + _HELP_NOTE
)

HELP_USER = (
    "📋 Доступные команды:\n\n"
    "/stats - статистика пользователя\n"
    "/admins - список администраторов\n"
    "/moders - список модераторов\n"
    "/help - показать это сообщение\n\n"
    "Примечание: Для использования других команд обратитесь к модератору или администратору."
)


def parse_user_token(token: str) -> Optional[int]:
    """ID пользователя из упоминания или числа, иначе None."""
    token = token.strip()
    for pattern in MENTION_PATTERNS:
        match = pattern.match(token)
        if match:
            user_id = int(match.group(1))
            return user_id if user_id > 0 else None
    return None


def parse_command(text: str) -> Optional[List[str]]:
    """Разбить текст команды на части, имя команды в нижнем регистре без префикса."""
    parts = (text or "").split()
    if not parts or not parts[0].startswith(COMMAND_PREFIXES):
        return None
    name = parts[0][1:].lower()
    if not name:
        return None
    return [name] + parts[1:]


@dataclass
class CommandTarget:
    user_id: int
    args: List[str] = field(default_factory=list)


class CommandRouter:
    """Маршрутизация ``message_new``: служебные события, проверки, команды."""

    def __init__(self, engine: ModerationEngine):
        self.engine = engine
        self.config = engine.config
        self.store = engine.store
        self.api = engine.api
        self.permissions = engine.permissions
        self.commands: Dict[str, Callable[[Dict[str, Any], List[str]], None]] = {
            "mute": self.cmd_mute,
            "unmute": self.cmd_unmute,
            "ban": self.cmd_ban,
            "unban": self.cmd_unban,
            "kick": self.cmd_kick,
            "warn": self.cmd_warn,
            "unwarn": self.cmd_unwarn,
            "nick": self.cmd_nick,
            "stats": self.cmd_stats,
            "unite": self.cmd_unite,
            "separate": self.cmd_separate,
            "unified": self.cmd_unified,
            "addadmin": self.cmd_addadmin,
            "removeadmin": self.cmd_removeadmin,
            "admins": self.cmd_admins,
            "addmoder": self.cmd_addmoder,
            "removemoder": self.cmd_removemoder,
            "moders": self.cmd_moders,
            "modlog": self.cmd_modlog,
            "help": self.cmd_help,
        }

    # ========================================================================
    # PIPELINE
    # ========================================================================

    def handle_message(self, message: Dict[str, Any]) -> None:
        peer_id = message.get("peer_id")
        from_id = message.get("from_id")
        if peer_id is None or from_id is None:
            return

        action = message.get("action") or {}
        if action.get("type") in INVITE_ACTIONS:
            self.handle_invite(peer_id, action.get("member_id", from_id))
            return

        if from_id <= 0:
            return

        try:
            self.store.record_message(peer_id, from_id)
        except StorageError as exc:
            log.warning(f"Не удалось обновить статистику: {exc}")

        if not self.permissions.is_moderator(from_id) and self.engine.screen_message(message):
            return

        parts = parse_command(message.get("text", ""))
        if parts is None:
            return
        handler = self.commands.get(parts[0])
        if handler is None:
            return

        log.info(f"Command /{parts[0]} from {pseudonymize_id(from_id)} in {pseudonymize_chat_id(peer_id)}")
        try:
            handler(message, parts)
        except StorageError as exc:
            log.error(f"Команда /{parts[0]} не выполнена: {exc}")
            self.api.send_message(peer_id, STORAGE_FAILED_MESSAGE)

    def handle_invite(self, peer_id: int, member_id: int) -> None:
        if member_id == -self.config.group_id:
            self.api.send_message(peer_id, BOT_GREETING)
            return
        if member_id <= 0:
            return

        if self.engine.enforce_on_join(peer_id, member_id):
            return

        self.api.send_message(
            peer_id,
            f"👋 Добро пожаловать, {self.engine.mention(member_id)}! Используйте /help для просмотра доступных команд.",
        )
        try:
            self.store.record_join(peer_id, member_id)
        except StorageError as exc:
            log.warning(f"Не удалось записать дату входа: {exc}")

    # ========================================================================
    # HELPERS
    # ========================================================================

    def resolve_target(self, message: Dict[str, Any], parts: List[str]) -> Optional[CommandTarget]:
        """Определить цель команды. Аргументы после цели возвращаются в ``args``."""
        reply = message.get("reply_message") or {}
        reply_from = reply.get("from_id")
        if reply_from and reply_from > 0:
            return CommandTarget(int(reply_from), parts[1:])

        if len(parts) < 2:
            return None

        user_id = parse_user_token(parts[1])
        if user_id is None:
            user_id = self.store.find_user_by_nickname(parts[1], prefer_peer=message["peer_id"])
        if user_id is None:
            return None
        return CommandTarget(user_id, parts[2:])

    def _require(self, message: Dict[str, Any], tier: Tier, command: str) -> bool:
        if self.permissions.has_tier(message["from_id"], tier):
            return True
        self.api.send_message(message["peer_id"], DENIED.get(command, denied_message(tier)))
        return False

    def _target_or_usage(self, message: Dict[str, Any], parts: List[str]) -> Optional[CommandTarget]:
        target = self.resolve_target(message, parts)
        if target is None:
            self.api.send_message(message["peer_id"], USAGE[parts[0]])
        return target

    def _moderation_target(self, message: Dict[str, Any], parts: List[str]) -> Optional[CommandTarget]:
        if not self._require(message, Tier.MODERATOR, parts[0]):
            return None
        return self._target_or_usage(message, parts)

    def _nickname_suffix(self, peer_id: int, user_id: int) -> str:
        nickname = self.store.get_nickname(peer_id, user_id)
        return f" ({nickname})" if nickname else ""

    # ========================================================================
    # MODERATION COMMANDS
    # ========================================================================

    def cmd_mute(self, message: Dict[str, Any], parts: List[str]) -> None:
        target = self._moderation_target(message, parts)
        if target is None:
            return
        duration = None
        if target.args and target.args[0].isdigit():
            duration = int(target.args[0])
        self.engine.mute(message["peer_id"], target.user_id, duration, admin_id=message["from_id"])

    def cmd_unmute(self, message: Dict[str, Any], parts: List[str]) -> None:
        target = self._moderation_target(message, parts)
        if target is not None:
            self.engine.unmute(message["peer_id"], target.user_id, admin_id=message["from_id"])

    def cmd_ban(self, message: Dict[str, Any], parts: List[str]) -> None:
        target = self._moderation_target(message, parts)
        if target is not None:
            self.engine.ban(message["peer_id"], target.user_id, admin_id=message["from_id"])

    def cmd_unban(self, message: Dict[str, Any], parts: List[str]) -> None:
        target = self._moderation_target(message, parts)
        if target is not None:
            self.engine.unban(message["peer_id"], target.user_id, admin_id=message["from_id"])

    def cmd_kick(self, message: Dict[str, Any], parts: List[str]) -> None:
        target = self._moderation_target(message, parts)
        if target is not None:
            self.engine.kick(message["peer_id"], target.user_id, admin_id=message["from_id"])

    def cmd_warn(self, message: Dict[str, Any], parts: List[str]) -> None:
        target = self._moderation_target(message, parts)
        if target is not None:
            reason = " ".join(target.args)
            self.engine.warn(message["peer_id"], target.user_id, reason, admin_id=message["from_id"])

    def cmd_unwarn(self, message: Dict[str, Any], parts: List[str]) -> None:
        target = self._moderation_target(message, parts)
        if target is not None:
            self.engine.unwarn(message["peer_id"], target.user_id, admin_id=message["from_id"])

    def cmd_nick(self, message: Dict[str, Any], parts: List[str]) -> None:
        if not self._require(message, Tier.ADMIN, "nick"):
            return
        target = self.resolve_target(message, parts)
        if target is None or not target.args:
            self.api.send_message(message["peer_id"], USAGE["nick"])
            return
        nickname = " ".join(target.args)
        self.engine.set_nickname(message["peer_id"], target.user_id, nickname, admin_id=message["from_id"])

    # ========================================================================
    # INFO COMMANDS
    # ========================================================================

    def cmd_stats(self, message: Dict[str, Any], parts: List[str]) -> None:
        peer_id = message["peer_id"]
        from_id = message["from_id"]
        target = self.resolve_target(message, parts)
        user_id = target.user_id if target else from_id

        if user_id != from_id and not self._require(message, Tier.MODERATOR, "stats"):
            return

        stats = self.store.get_user_stats(peer_id, user_id)
        nickname = self.store.get_nickname(peer_id, user_id) or "Не установлен"
        warn_count = self.store.get_warn_count(peer_id, user_id)

        mute_status = "Нет"
        if self.store.is_muted(user_id):
            mute_status = f"Да (осталось {format_duration(self.store.mute_remaining(user_id))})"
        ban_status = "Да" if self.store.is_banned(user_id) else "Нет"

        self.api.send_message(
            peer_id,
            f"📊 Статистика пользователя {self.engine.mention(user_id)}:\n\n"
            f"👤 Никнейм: {nickname}\n"
            f"📅 В беседе с: {format_timestamp(stats.join_date)}\n"
            f"💬 Сообщений: {stats.message_count}\n"
            f"🕒 Последнее сообщение: {format_timestamp(stats.last_message)}\n"
            f"⚠️ Предупреждения: {warn_count}/{self.config.max_warnings}\n"
            f"🔇 Мут: {mute_status}\n"
            f"⛔ Бан: {ban_status}\n",
        )

    def cmd_modlog(self, message: Dict[str, Any], parts: List[str]) -> None:
        if not self._require(message, Tier.MODERATOR, "modlog"):
            return
        peer_id = message["peer_id"]
        target = self.resolve_target(message, parts) if len(parts) > 1 else None
        actions = self.store.load_mod_log(peer_id, MOD_LOG_LIMIT, target.user_id if target else None)
        if not actions:
            self.api.send_message(peer_id, "📋 Лог модерации пуст")
            return
        lines = "\n".join(format_mod_log_entry(action) for action in actions)
        self.api.send_message(peer_id, f"📋 Лог модерации:\n\n{lines}")

    def cmd_help(self, message: Dict[str, Any], parts: List[str]) -> None:
        tier = self.permissions.tier(message["from_id"])
        if tier >= Tier.ADMIN:
            text = HELP_ADMIN
        elif tier >= Tier.MODERATOR:
            text = HELP_MODERATOR
        else:
            text = HELP_USER
        self.api.send_message(message["peer_id"], text)

    # ========================================================================
    # UNIFIED CHATS
    # ========================================================================

    def _chat_title(self, peer_id: int) -> str:
        return self.api.get_chat_title(peer_id) or f"Беседа #{peer_id}"

    def cmd_unite(self, message: Dict[str, Any], parts: List[str]) -> None:
        if not self._require(message, Tier.ADMIN, "unite"):
            return
        peer_id = message["peer_id"]
        if not self.store.add_unified_chat(peer_id):
            self.api.send_message(peer_id, "ℹ️ Этот чат уже объединён.")
            return

        log.info(f"Chat {pseudonymize_chat_id(peer_id)} joined the unified group")
        title = self._chat_title(peer_id)
        for chat_id in self.store.get_unified_chats():
            if chat_id != peer_id:
                self.api.send_message(chat_id, f"🔄 К сети добавлена беседа: {title}")
        self.api.send_message(peer_id, "✅ Этот чат теперь объединён с другими.")

    def cmd_separate(self, message: Dict[str, Any], parts: List[str]) -> None:
        if not self._require(message, Tier.ADMIN, "separate"):
            return
        peer_id = message["peer_id"]
        if not self.store.remove_unified_chat(peer_id):
            self.api.send_message(peer_id, "ℹ️ Этот чат не был объединён.")
            return

        log.info(f"Chat {pseudonymize_chat_id(peer_id)} left the unified group")
        title = self._chat_title(peer_id)
        for chat_id in self.store.get_unified_chats():
            self.api.send_message(chat_id, f"🔄 Беседа отключена от сети: {title}")
        self.api.send_message(peer_id, "❌ Этот чат больше не объединён.")

    def cmd_unified(self, message: Dict[str, Any], parts: List[str]) -> None:
        if not self._require(message, Tier.ADMIN, "unified"):
            return
        chats = self.store.get_unified_chats()
        if not chats:
            self.api.send_message(message["peer_id"], "ℹ️ Нет объединённых бесед")
            return
        lines = "".join(f"- ID: {chat_id}\n" for chat_id in chats)
        self.api.send_message(message["peer_id"], f"📋 Объединённые беседы:\n{lines}")

    # ========================================================================
    # ROSTER
    # ========================================================================

    def cmd_addadmin(self, message: Dict[str, Any], parts: List[str]) -> None:
        if not self._require(message, Tier.SUPER_ADMIN, "addadmin"):
            return
        target = self._target_or_usage(message, parts)
        if target is None:
            return
        peer_id = message["peer_id"]
        if self.permissions.is_admin(target.user_id) or not self.store.add_admin(target.user_id):
            self.api.send_message(peer_id, "ℹ️ Этот пользователь уже является администратором")
            return
        log.info(f"Admin added: {pseudonymize_id(target.user_id)}")
        self.api.send_message(
            peer_id, f"✅ Пользователь {self.engine.mention(target.user_id)} добавлен в список администраторов"
        )

    def cmd_removeadmin(self, message: Dict[str, Any], parts: List[str]) -> None:
        if not self._require(message, Tier.SUPER_ADMIN, "removeadmin"):
            return
        target = self._target_or_usage(message, parts)
        if target is None:
            return
        peer_id = message["peer_id"]
        if self.permissions.is_super_admin(target.user_id):
            self.api.send_message(peer_id, "⛔ Нельзя удалить главного администратора")
            return
        if not self.store.remove_admin(target.user_id):
            self.api.send_message(peer_id, "ℹ️ Этот пользователь не является администратором")
            return
        log.info(f"Admin removed: {pseudonymize_id(target.user_id)}")
        self.api.send_message(
            peer_id, f"✅ Пользователь {self.engine.mention(target.user_id)} удален из списка администраторов"
        )

    def cmd_admins(self, message: Dict[str, Any], parts: List[str]) -> None:
        peer_id = message["peer_id"]
        admin_ids: List[int] = []
        for user_id in self.permissions.super_admin_ids + self.store.get_admins():
            if user_id not in admin_ids:
                admin_ids.append(user_id)

        text = "👑 Список администраторов:\n\n"
        for user_id in admin_ids:
            entry = f"{self.engine.mention(user_id)}{self._nickname_suffix(peer_id, user_id)}"
            if self.permissions.is_super_admin(user_id):
                text += f"👑 {entry} - Главный администратор\n"
            else:
                text += f"⭐ {entry}\n"
        self.api.send_message(peer_id, text)

    def cmd_addmoder(self, message: Dict[str, Any], parts: List[str]) -> None:
        if not self._require(message, Tier.ADMIN, "addmoder"):
            return
        target = self._target_or_usage(message, parts)
        if target is None:
            return
        peer_id = message["peer_id"]
        if self.permissions.is_admin(target.user_id):
            self.api.send_message(peer_id, "ℹ️ Этот пользователь уже является администратором")
            return
        if not self.store.add_moderator(target.user_id):
            self.api.send_message(peer_id, "ℹ️ Этот пользователь уже является модератором")
            return
        log.info(f"Moderator added: {pseudonymize_id(target.user_id)}")
        self.api.send_message(
            peer_id, f"✅ Пользователь {self.engine.mention(target.user_id)} добавлен в список модераторов"
        )

    def cmd_removemoder(self, message: Dict[str, Any], parts: List[str]) -> None:
        if not self._require(message, Tier.ADMIN, "removemoder"):
            return
        target = self._target_or_usage(message, parts)
        if target is None:
            return
        peer_id = message["peer_id"]
        if not self.store.remove_moderator(target.user_id):
            self.api.send_message(peer_id, "ℹ️ Этот пользователь не является модератором")
            return
        log.info(f"Moderator removed: {pseudonymize_id(target.user_id)}")
        self.api.send_message(
            peer_id, f"✅ Пользователь {self.engine.mention(target.user_id)} удален из списка модераторов"
        )

    def cmd_moders(self, message: Dict[str, Any], parts: List[str]) -> None:
        peer_id = message["peer_id"]
        moderators = self.store.get_moderators()
        if not moderators:
            self.api.send_message(peer_id, "ℹ️ Список модераторов пуст")
            return
        text = "🛡️ Список модераторов:\n\n"
        for user_id in moderators:
            text += f"🛡️ {self.engine.mention(user_id)}{self._nickname_suffix(peer_id, user_id)}\n"
        self.api.send_message(peer_id, text)
