# Copyright (c) 2025 sprowii
"""Клиент VK API для исходящих вызовов бота."""
import random
from typing import Any, Dict, List, Optional

import requests

from vkmod.config import CHAT_PEER_OFFSET, VK_API_URL, VK_API_VERSION, BotConfig
from vkmod.logging_config import log
from vkmod.security.data_protection import pseudonymize_chat_id, pseudonymize_id
from vkmod.utils.text import split_long_message


class VkApiError(Exception):
    """Ошибка транспорта или ответ VK с полем ``error``."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class VkApi:
    def __init__(self, config: BotConfig, session: Optional[requests.Session] = None):
        self.token = config.group_token
        self.group_id = config.group_id
        self.timeout = config.api_timeout
        self.session = session or requests.Session()
        self._mention_cache: Dict[int, str] = {}

    def call(self, method: str, **params: Any) -> Any:
        """Вызвать метод API и вернуть поле ``response``."""
        payload = {"access_token": self.token, "v": VK_API_VERSION}
        payload.update({key: value for key, value in params.items() if value is not None})
        try:
            response = self.session.post(f"{VK_API_URL}{method}", data=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as exc:
            raise VkApiError(f"{method}: ошибка запроса: {exc}") from exc
        except ValueError as exc:
            raise VkApiError(f"{method}: некорректный JSON в ответе") from exc

        if not isinstance(data, dict):
            raise VkApiError(f"{method}: неожиданный тип ответа")
        if "error" in data:
            error = data["error"] or {}
            raise VkApiError(
                f"{method}: {error.get('error_msg', 'неизвестная ошибка')}",
                code=error.get("error_code"),
            )
        if "response" not in data:
            raise VkApiError(f"{method}: в ответе нет поля response")
        return data["response"]

    # ========================================================================
    # LONG POLL
    # ========================================================================

    def get_long_poll_server(self) -> Dict[str, Any]:
        return self.call("groups.getLongPollServer", group_id=self.group_id)

    # ========================================================================
    # MESSAGES
    # ========================================================================

    def send_message(self, peer_id: int, text: str) -> bool:
        """Отправить сообщение, длинный текст делится на части."""
        ok = True
        for chunk in split_long_message(text):
            try:
                self.call(
                    "messages.send",
                    peer_id=peer_id,
                    message=chunk,
                    random_id=random.randint(1, 2 ** 31 - 1),
                )
            except VkApiError as exc:
                log.error(f"Не удалось отправить сообщение в {pseudonymize_chat_id(peer_id)}: {exc}")
                ok = False
        return ok

    def delete_message(self, peer_id: int, conversation_message_id: int) -> bool:
        try:
            self.call(
                "messages.delete",
                peer_id=peer_id,
                conversation_message_ids=conversation_message_id,
                delete_for_all=1,
            )
            return True
        except VkApiError as exc:
            log.error(f"Ошибка удаления сообщения {conversation_message_id}: {exc}")
            return False

    def remove_chat_user(self, peer_id: int, user_id: int) -> bool:
        """Исключить пользователя из беседы."""
        if peer_id <= CHAT_PEER_OFFSET:
            log.warning(f"peer {pseudonymize_chat_id(peer_id)} не является беседой, исключение невозможно")
            return False
        try:
            self.call("messages.removeChatUser", chat_id=peer_id - CHAT_PEER_OFFSET, user_id=user_id)
            return True
        except VkApiError as exc:
            log.error(
                f"Не удалось исключить {pseudonymize_id(user_id)} из {pseudonymize_chat_id(peer_id)}: {exc}"
            )
            return False

    def get_chat_title(self, peer_id: int) -> Optional[str]:
        try:
            data = self.call("messages.getConversationsById", peer_ids=peer_id)
        except VkApiError as exc:
            log.warning(f"Не удалось получить информацию о беседе: {exc}")
            return None
        items = data.get("items") or []
        if not items:
            return None
        return (items[0].get("chat_settings") or {}).get("title")

    # ========================================================================
    # USERS
    # ========================================================================

    def get_users(self, user_ids: List[int]) -> List[Dict[str, Any]]:
        try:
            return self.call(
                "users.get",
                user_ids=",".join(str(uid) for uid in user_ids),
                fields="first_name,last_name",
            )
        except VkApiError as exc:
            log.error(f"Ошибка запроса к users.get: {exc}")
            return []

    def get_user_mention(self, user_id: int) -> str:
        """Упоминание вида ``[id123|Имя Фамилия]``, имена кэшируются."""
        cached = self._mention_cache.get(user_id)
        if cached:
            return cached

        users = self.get_users([user_id])
        if not users:
            return f"[id{user_id}|id{user_id}]"

        user = users[0]
        name = f"{user.get('first_name', 'Неизвестно')} {user.get('last_name', '')}".strip()
        mention = f"[id{user_id}|{name}]"
        self._mention_cache[user_id] = mention
        return mention
