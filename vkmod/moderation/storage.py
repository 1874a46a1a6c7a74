# Copyright (c) 2025 sprowii
"""Хранилище состояния модерации в Redis.

Каждая таблица - отдельный ключ с JSON-документом:
- vkmod:mutes - {user_id: expire_at}, глобально для всех бесед
- vkmod:bans - [user_id], глобально
- vkmod:kicks - {user_id: expire_at}, глобально
- vkmod:warns - {peer_id: {user_id: count}}
- vkmod:nicknames - {peer_id: {user_id: nickname}}, шифруется при наличии ключа
- vkmod:unified_chats - [peer_id]
- vkmod:user_stats - {peer_id: {user_id: {join_date, message_count, last_message}}}
- vkmod:roster:admins, vkmod:roster:moderators - [user_id]
- vkmod:modlog:{peer_id} - список действий модерации (новые первые)

Таблица создаётся пустой при первом чтении и сохраняется целиком при каждом
изменении. Блокировок нет: все записи делает один цикл событий.
"""
import json
import time
from dataclasses import asdict
from typing import Any, Callable, Dict, Iterable, List, Optional

import redis

from vkmod.config import KEY_PREFIX
from vkmod.logging_config import log
from vkmod.moderation.models import ModAction, UserStats
from vkmod.security.data_protection import decrypt_payload, encrypt_payload

MUTES = "mutes"
BANS = "bans"
KICKS = "kicks"
WARNS = "warns"
NICKNAMES = "nicknames"
UNIFIED_CHATS = "unified_chats"
USER_STATS = "user_stats"
ADMINS = "roster:admins"
MODERATORS = "roster:moderators"
MODLOG_PREFIX = "modlog:"

# Таблицы, которые хранятся зашифрованными
ENCRYPTED_TABLES = frozenset({NICKNAMES})

# Максимальное количество записей в логе модерации
MAX_MODLOG_ENTRIES = 1000


class StorageError(Exception):
    """Не удалось прочитать или записать таблицу в Redis."""


def create_redis_client(url: str) -> redis.Redis:
    return redis.Redis.from_url(url, decode_responses=True)


def _int_keys(data: Dict[str, Any]) -> Dict[int, Any]:
    return {int(key): value for key, value in data.items()}


class StateStore:
    """Типизированные read-modify-write операции над таблицами модерации."""

    def __init__(
        self,
        client: redis.Redis,
        seed_admins: Iterable[int] = (),
        seed_moderators: Iterable[int] = (),
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.clock = clock
        self._seed = {
            ADMINS: [int(uid) for uid in seed_admins],
            MODERATORS: [int(uid) for uid in seed_moderators],
        }

    # ========================================================================
    # LOW LEVEL
    # ========================================================================

    @staticmethod
    def _key(table: str) -> str:
        return f"{KEY_PREFIX}{table}"

    def _load(self, table: str, default: Callable[[], Any], strict: bool = False) -> Any:
        """Прочитать таблицу. Пустая таблица -> default().

        Ошибка чтения, расшифровки или разбора JSON при ``strict=False``
        тоже даёт default(). Изменяющие методы читают со ``strict=True``:
        таблица сохраняется целиком, и запись поверх default() стёрла бы
        все остальные записи.
        """
        key = self._key(table)
        try:
            raw_value = self.client.get(key)
        except redis.RedisError as exc:
            log.error(f"Ошибка чтения таблицы {table}: {exc}")
            if strict:
                raise StorageError(f"Не удалось прочитать таблицу {table}") from exc
            return default()

        if table in ENCRYPTED_TABLES and raw_value:
            decrypted = decrypt_payload(raw_value)
            if decrypted is None:
                log.error(f"Не удалось расшифровать таблицу {table}")
                if strict:
                    raise StorageError(f"Не удалось расшифровать таблицу {table}")
                return default()
            raw_value = decrypted
        if not raw_value:
            return default()

        try:
            return json.loads(raw_value)
        except json.JSONDecodeError as exc:
            log.warning(f"Некорректный JSON в таблице {table}: {exc}")
            if strict:
                raise StorageError(f"Таблица {table} повреждена") from exc
            return default()

    def _save(self, table: str, data: Any) -> None:
        key = self._key(table)
        payload = json.dumps(data, ensure_ascii=False)
        if table in ENCRYPTED_TABLES:
            payload = encrypt_payload(payload)
        try:
            self.client.set(key, payload)
        except redis.RedisError as exc:
            log.error(f"Не удалось сохранить таблицу {table}: {exc}")
            raise StorageError(f"Не удалось сохранить таблицу {table}") from exc

    def _now(self, now: Optional[float]) -> float:
        return self.clock() if now is None else now

    # ========================================================================
    # MUTES
    # ========================================================================

    def _load_mutes(self, strict: bool = False) -> Dict[int, float]:
        raw = self._load(MUTES, dict, strict=strict)
        return {uid: float(expire) for uid, expire in _int_keys(raw).items()}

    def get_mutes(self) -> Dict[int, float]:
        return self._load_mutes()

    def _save_mutes(self, mutes: Dict[int, float]) -> None:
        self._save(MUTES, {str(uid): expire for uid, expire in mutes.items()})

    def set_mute(self, user_id: int, expire_at: float) -> None:
        mutes = self._load_mutes(strict=True)
        mutes[user_id] = expire_at
        self._save_mutes(mutes)

    def remove_mute(self, user_id: int) -> bool:
        """Удалить запись о муте. False если записи не было."""
        mutes = self._load_mutes(strict=True)
        if user_id not in mutes:
            return False
        del mutes[user_id]
        self._save_mutes(mutes)
        return True

    def is_muted(self, user_id: int, now: Optional[float] = None) -> bool:
        expire_at = self.get_mutes().get(user_id)
        return expire_at is not None and expire_at > self._now(now)

    def mute_remaining(self, user_id: int, now: Optional[float] = None) -> int:
        expire_at = self.get_mutes().get(user_id)
        if expire_at is None:
            return 0
        return max(0, int(expire_at - self._now(now)))

    def pop_expired_mutes(self, now: Optional[float] = None) -> List[int]:
        """Удалить все истёкшие муты одной записью и вернуть их user_id."""
        current = self._now(now)
        mutes = self._load_mutes(strict=True)
        expired = [uid for uid, expire_at in mutes.items() if expire_at <= current]
        if not expired:
            return []
        for uid in expired:
            del mutes[uid]
        self._save_mutes(mutes)
        return expired

    # ========================================================================
    # BANS
    # ========================================================================

    def _load_bans(self, strict: bool = False) -> List[int]:
        return [int(uid) for uid in self._load(BANS, list, strict=strict)]

    def get_bans(self) -> List[int]:
        return self._load_bans()

    def is_banned(self, user_id: int) -> bool:
        return user_id in self.get_bans()

    def add_ban(self, user_id: int) -> bool:
        bans = self._load_bans(strict=True)
        if user_id in bans:
            return False
        bans.append(user_id)
        self._save(BANS, bans)
        return True

    def remove_ban(self, user_id: int) -> bool:
        bans = self._load_bans(strict=True)
        if user_id not in bans:
            return False
        bans.remove(user_id)
        self._save(BANS, bans)
        return True

    # ========================================================================
    # KICKS
    # ========================================================================

    def _load_kicks(self, strict: bool = False) -> Dict[int, float]:
        raw = self._load(KICKS, dict, strict=strict)
        return {uid: float(expire) for uid, expire in _int_keys(raw).items()}

    def get_kicks(self) -> Dict[int, float]:
        return self._load_kicks()

    def set_kick(self, user_id: int, expire_at: float) -> None:
        kicks = self._load_kicks(strict=True)
        kicks[user_id] = expire_at
        self._save(KICKS, {str(uid): expire for uid, expire in kicks.items()})

    def is_kicked(self, user_id: int, now: Optional[float] = None) -> bool:
        expire_at = self.get_kicks().get(user_id)
        return expire_at is not None and expire_at > self._now(now)

    # ========================================================================
    # WARNS
    # ========================================================================

    def get_warn_count(self, peer_id: int, user_id: int) -> int:
        return int(self._load(WARNS, dict).get(str(peer_id), {}).get(str(user_id), 0))

    def _update_warn(self, peer_id: int, user_id: int, update: Callable[[int], int]) -> int:
        """Прочитать счётчик, применить update и сохранить одной записью."""
        warns = self._load(WARNS, dict, strict=True)
        room = warns.setdefault(str(peer_id), {})
        count = max(0, update(int(room.get(str(user_id), 0))))
        room[str(user_id)] = count
        self._save(WARNS, warns)
        return count

    def increment_warn(self, peer_id: int, user_id: int, reset_at: Optional[int] = None) -> int:
        """Добавить предупреждение.

        Если счётчик достиг ``reset_at``, сохраняется 0. Возвращается
        значение до обнуления.
        """
        total = 0

        def _apply(count: int) -> int:
            nonlocal total
            total = count + 1
            if reset_at is not None and total >= reset_at:
                return 0
            return total

        self._update_warn(peer_id, user_id, _apply)
        return total

    def decrement_warn(self, peer_id: int, user_id: int) -> Optional[int]:
        """Снять одно предупреждение. None если снимать нечего."""
        if self.get_warn_count(peer_id, user_id) <= 0:
            return None
        return self._update_warn(peer_id, user_id, lambda count: count - 1)

    # ========================================================================
    # NICKNAMES
    # ========================================================================

    def get_nicknames(self) -> Dict[int, Dict[int, str]]:
        return {
            peer: _int_keys(users)
            for peer, users in _int_keys(self._load(NICKNAMES, dict)).items()
        }

    def get_nickname(self, peer_id: int, user_id: int) -> Optional[str]:
        return self.get_nicknames().get(peer_id, {}).get(user_id)

    def set_nickname(self, peer_id: int, user_id: int, nickname: str) -> None:
        nicknames = self._load(NICKNAMES, dict, strict=True)
        nicknames.setdefault(str(peer_id), {})[str(user_id)] = nickname
        self._save(NICKNAMES, nicknames)

    def find_user_by_nickname(self, nickname: str, prefer_peer: Optional[int] = None) -> Optional[int]:
        """Найти пользователя по никнейму без учёта регистра.

        Сначала ищем в беседе prefer_peer, затем во всех остальных.
        """
        wanted = nickname.casefold()
        nicknames = self.get_nicknames()
        peers = list(nicknames)
        if prefer_peer in nicknames:
            peers.remove(prefer_peer)
            peers.insert(0, prefer_peer)
        for peer in peers:
            for user_id, name in nicknames[peer].items():
                if name.casefold() == wanted:
                    return user_id
        return None

    # ========================================================================
    # UNIFIED CHATS
    # ========================================================================

    def _load_unified_chats(self, strict: bool = False) -> List[int]:
        return [int(peer) for peer in self._load(UNIFIED_CHATS, list, strict=strict)]

    def get_unified_chats(self) -> List[int]:
        return self._load_unified_chats()

    def add_unified_chat(self, peer_id: int) -> bool:
        chats = self._load_unified_chats(strict=True)
        if peer_id in chats:
            return False
        chats.append(peer_id)
        self._save(UNIFIED_CHATS, chats)
        return True

    def remove_unified_chat(self, peer_id: int) -> bool:
        chats = self._load_unified_chats(strict=True)
        if peer_id not in chats:
            return False
        chats.remove(peer_id)
        self._save(UNIFIED_CHATS, chats)
        return True

    # ========================================================================
    # USER STATS
    # ========================================================================

    def get_user_stats(self, peer_id: int, user_id: int) -> UserStats:
        raw = self._load(USER_STATS, dict).get(str(peer_id), {}).get(str(user_id))
        return UserStats.from_dict(raw) if raw else UserStats()

    def _update_stats(self, peer_id: int, user_id: int, update: Callable[[UserStats], None]) -> UserStats:
        stats_table = self._load(USER_STATS, dict, strict=True)
        room = stats_table.setdefault(str(peer_id), {})
        raw = room.get(str(user_id))
        stats = UserStats.from_dict(raw) if raw else UserStats()
        update(stats)
        room[str(user_id)] = asdict(stats)
        self._save(USER_STATS, stats_table)
        return stats

    def record_join(self, peer_id: int, user_id: int, now: Optional[float] = None) -> UserStats:
        current = self._now(now)

        def _apply(stats: UserStats) -> None:
            if stats.join_date is None:
                stats.join_date = current

        return self._update_stats(peer_id, user_id, _apply)

    def record_message(self, peer_id: int, user_id: int, now: Optional[float] = None) -> UserStats:
        current = self._now(now)

        def _apply(stats: UserStats) -> None:
            stats.message_count += 1
            stats.last_message = current
            if stats.join_date is None:
                stats.join_date = current

        return self._update_stats(peer_id, user_id, _apply)

    # ========================================================================
    # ROSTER
    # ========================================================================

    def _get_roster(self, table: str, strict: bool = False) -> List[int]:
        return [int(uid) for uid in self._load(table, lambda: list(self._seed[table]), strict=strict)]

    def _add_to_roster(self, table: str, user_id: int) -> bool:
        roster = self._get_roster(table, strict=True)
        if user_id in roster:
            return False
        roster.append(user_id)
        self._save(table, roster)
        return True

    def _remove_from_roster(self, table: str, user_id: int) -> bool:
        roster = self._get_roster(table, strict=True)
        if user_id not in roster:
            return False
        roster.remove(user_id)
        self._save(table, roster)
        return True

    def get_admins(self) -> List[int]:
        return self._get_roster(ADMINS)

    def add_admin(self, user_id: int) -> bool:
        return self._add_to_roster(ADMINS, user_id)

    def remove_admin(self, user_id: int) -> bool:
        return self._remove_from_roster(ADMINS, user_id)

    def get_moderators(self) -> List[int]:
        return self._get_roster(MODERATORS)

    def add_moderator(self, user_id: int) -> bool:
        return self._add_to_roster(MODERATORS, user_id)

    def remove_moderator(self, user_id: int) -> bool:
        return self._remove_from_roster(MODERATORS, user_id)

    # ========================================================================
    # MODLOG
    # ========================================================================

    def save_mod_action(self, action: ModAction) -> None:
        """Сохранить действие модерации в лог беседы."""
        key = self._key(f"{MODLOG_PREFIX}{action.chat_id}")
        try:
            with self.client.pipeline() as pipe:
                pipe.lpush(key, json.dumps(asdict(action), ensure_ascii=False))
                # Ограничиваем размер лога
                pipe.ltrim(key, 0, MAX_MODLOG_ENTRIES - 1)
                pipe.execute()
        except redis.RedisError as exc:
            log.error(f"Не удалось сохранить действие модерации: {exc}")
            raise StorageError("Не удалось сохранить действие модерации") from exc

    def load_mod_log(
        self,
        chat_id: int,
        limit: int = 20,
        user_id: Optional[int] = None
    ) -> List[ModAction]:
        """Загрузить лог модерации беседы.

        Args:
            chat_id: peer_id беседы
            limit: Максимальное количество записей
            user_id: Если указан, фильтровать по пользователю
        """
        key = self._key(f"{MODLOG_PREFIX}{chat_id}")
        try:
            # Загружаем больше записей если нужна фильтрация
            fetch_limit = limit * 5 if user_id else limit
            raw_values = self.client.lrange(key, 0, fetch_limit - 1)
        except redis.RedisError as exc:
            log.error(f"Ошибка загрузки лога модерации для чата {chat_id}: {exc}")
            return []

        actions = []
        for raw in raw_values:
            try:
                action = ModAction(**json.loads(raw))
            except (json.JSONDecodeError, TypeError) as exc:
                log.warning(f"Некорректные данные действия модерации: {exc}")
                continue

            if user_id is not None and action.target_user_id != user_id:
                continue

            actions.append(action)
            if len(actions) >= limit:
                break

        return actions
