# Copyright (c) 2025 sprowii
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from vkmod.config import BotConfig

LINK_REGEX = re.compile(r"https?://\S+", re.IGNORECASE)

FILTER_REASON_MESSAGES = {
    "bad_word": "🚫 Сообщение содержит запрещённое слово",
    "link": "🚫 Ссылки в беседе запрещены",
    "mentions": "🚫 Слишком много упоминаний в одном сообщении",
}


@dataclass
class FilterCheckResult:
    """Результат проверки сообщения фильтрами контента."""
    is_filtered: bool
    reason: Optional[str] = None
    matched_word: Optional[str] = None

    @property
    def notice(self) -> str:
        return FILTER_REASON_MESSAGES.get(self.reason or "", "🚫 Сообщение удалено фильтром")


class ContentFilter:
    """Фильтр запрещённых слов, ссылок и массовых упоминаний."""

    def __init__(self, config: BotConfig):
        self.bad_words_enabled = config.bad_words_filter
        self.links_enabled = config.auto_delete_links
        self.max_mentions = config.max_mentions
        self.words: List[str] = [word.casefold() for word in config.bad_words if word]

    def find_bad_word(self, text: str) -> Optional[str]:
        if not self.bad_words_enabled or not text:
            return None
        lowered = text.casefold()
        for word in self.words:
            if word in lowered:
                return word
        return None

    def has_link(self, text: str) -> bool:
        if not self.links_enabled or not text:
            return False
        return LINK_REGEX.search(text) is not None

    def count_mentions(self, message: Dict[str, Any]) -> int:
        """Авторы пересланных сообщений плюс автор сообщения, на которое ответили."""
        count = len(message.get("fwd_messages") or [])
        if message.get("reply_message"):
            count += 1
        return count

    def check(self, message: Dict[str, Any]) -> FilterCheckResult:
        text = message.get("text") or ""

        word = self.find_bad_word(text)
        if word:
            return FilterCheckResult(is_filtered=True, reason="bad_word", matched_word=word)

        if self.has_link(text):
            return FilterCheckResult(is_filtered=True, reason="link")

        if self.count_mentions(message) > self.max_mentions:
            return FilterCheckResult(is_filtered=True, reason="mentions")

        return FilterCheckResult(is_filtered=False)
