# Copyright (c) 2025 sprowii
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _resolve_redis_url(raw_url: str) -> str:
    if ".upstash.io" in raw_url and raw_url.startswith("redis://"):
        return "rediss" + raw_url[len("redis") :]
    return raw_url


def _parse_ids(raw: Optional[str]) -> List[int]:
    if not raw:
        return []
    ids: List[int] = []
    for chunk in raw.replace(";", ",").split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            ids.append(int(chunk))
        except ValueError:
            raise RuntimeError(f"Некорректный ID в списке: {chunk!r}")
    return ids


def _parse_words(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [word.strip() for word in raw.split(",") if word.strip()]


def _getenv_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _getenv_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Переменная окружения {name} должна быть целым числом, получено: {raw!r}")


VK_API_URL = "https://api.vk.com/method/"
VK_API_VERSION = "5.131"

# peer_id бесед = 2000000000 + chat_id
CHAT_PEER_OFFSET = 2000000000

KEY_PREFIX = "vkmod:"


@dataclass
class BotConfig:
    """Конфигурация бота.

    Собирается из переменных окружения через ``from_env``; в тестах
    создаётся напрямую.
    """
    group_token: str
    group_id: int
    admin_ids: List[int]
    redis_url: str = "redis://localhost:6379/0"
    moderator_ids: List[int] = field(default_factory=list)
    super_admin_ids: List[int] = field(default_factory=list)

    unified_mode: bool = True

    # Flood control
    flood_max_messages: int = 5
    flood_time_window: int = 10
    flood_mute_duration: int = 300

    # Content filter
    auto_delete_links: bool = True
    bad_words_filter: bool = True
    bad_words: List[str] = field(default_factory=list)
    max_mentions: int = 3

    kick_duration: int = 600
    max_warnings: int = 3

    # Long poll
    longpoll_wait: int = 25
    longpoll_retry_delay: float = 5.0
    longpoll_backoff_cap: float = 60.0
    longpoll_max_attempts: int = 8
    sweep_interval: float = 10.0

    api_timeout: float = 30.0

    def effective_super_admins(self) -> List[int]:
        """Главные администраторы; по умолчанию первый из ``admin_ids``."""
        if self.super_admin_ids:
            return list(self.super_admin_ids)
        return self.admin_ids[:1]

    @classmethod
    def from_env(cls) -> "BotConfig":
        group_token = os.getenv("VK_GROUP_TOKEN")
        if not group_token:
            raise RuntimeError("Переменная окружения VK_GROUP_TOKEN должна быть установлена")

        raw_group_id = os.getenv("VK_GROUP_ID")
        if not raw_group_id:
            raise RuntimeError("Переменная окружения VK_GROUP_ID должна быть установлена")

        redis_url = os.getenv("REDIS_URL")
        if not redis_url:
            raise RuntimeError("Переменная окружения REDIS_URL должна быть установлена")

        admin_ids = _parse_ids(os.getenv("ADMIN_IDS"))
        if not admin_ids:
            raise RuntimeError("Необходимо указать хотя бы одного администратора в ADMIN_IDS")

        return cls(
            group_token=group_token,
            group_id=abs(_getenv_int("VK_GROUP_ID", 0)),
            admin_ids=admin_ids,
            redis_url=_resolve_redis_url(redis_url),
            moderator_ids=_parse_ids(os.getenv("MODERATOR_IDS")),
            super_admin_ids=_parse_ids(os.getenv("SUPER_ADMIN_IDS")),
            unified_mode=_getenv_bool("UNIFIED_MODE", True),
            flood_max_messages=_getenv_int("FLOOD_MAX_MESSAGES", 5),
            flood_time_window=_getenv_int("FLOOD_TIME_WINDOW", 10),
            flood_mute_duration=_getenv_int("FLOOD_MUTE_DURATION", 300),
            auto_delete_links=_getenv_bool("AUTO_DELETE_LINKS", True),
            bad_words_filter=_getenv_bool("BAD_WORDS_FILTER", True),
            bad_words=_parse_words(os.getenv("BAD_WORDS")),
            max_mentions=_getenv_int("MAX_MENTIONS", 3),
            kick_duration=_getenv_int("KICK_DURATION", 600),
            max_warnings=_getenv_int("MAX_WARNINGS", 3),
            longpoll_wait=_getenv_int("LONGPOLL_WAIT", 25),
            longpoll_retry_delay=float(_getenv_int("LONGPOLL_RETRY_DELAY", 5)),
            longpoll_backoff_cap=float(_getenv_int("LONGPOLL_BACKOFF_CAP", 60)),
            longpoll_max_attempts=_getenv_int("LONGPOLL_MAX_ATTEMPTS", 8),
            sweep_interval=float(_getenv_int("SWEEP_INTERVAL", 10)),
            api_timeout=float(_getenv_int("VK_API_TIMEOUT", 30)),
        )
