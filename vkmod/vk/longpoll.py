# Copyright (c) 2025 sprowii
"""Bots Long Poll API: получение и продление сессии, чтение событий.

Сессия состоит из адреса сервера, ключа и курсора ``ts``. Курсор
обновляется после каждого успешного запроса, даже пустого, иначе
события будут обработаны повторно.
"""
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

import requests

from vkmod.logging_config import log
from vkmod.vk.api import VkApi, VkApiError


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


class LongPollTransportError(Exception):
    """Сетевая ошибка или ответ, который нельзя разобрать."""


class SessionExpiredError(Exception):
    """Сервер вернул ``failed``: сессию нужно получить заново."""

    def __init__(self, code: Any):
        super().__init__(f"Long Poll сессия недействительна (failed={code})")
        self.code = code


class SessionAcquisitionError(Exception):
    """Не удалось получить сессию за отведённое число попыток."""


@dataclass
class LongPollSession:
    server: str
    key: str
    cursor: str


@dataclass
class PollResult:
    events: List[Dict[str, Any]] = field(default_factory=list)
    cursor: str = ""


class LongPollSessionManager:
    """Управление сессией Long Poll.

    Получение сессии повторяется с экспоненциальной задержкой
    (``retry_delay * 2**n``, не больше ``backoff_cap``) не более
    ``max_attempts`` раз за раунд; пока идут попытки, состояние
    ``RECONNECTING``.
    """

    def __init__(
        self,
        api: VkApi,
        wait: int = 25,
        retry_delay: float = 5.0,
        backoff_cap: float = 60.0,
        max_attempts: int = 8,
        http: Optional[requests.Session] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.api = api
        self.wait = wait
        self.retry_delay = retry_delay
        self.backoff_cap = backoff_cap
        self.max_attempts = max_attempts
        self.http = http or requests.Session()
        self.stop_event = stop_event or threading.Event()
        self.state = SessionState.DISCONNECTED
        self.session: Optional[LongPollSession] = None

    # ========================================================================
    # SESSION
    # ========================================================================

    def backoff_delay(self, attempt: int) -> float:
        """Задержка перед попыткой номер ``attempt + 1`` (attempt >= 1)."""
        return min(self.backoff_cap, self.retry_delay * (2 ** (attempt - 1)))

    def _request_session(self) -> LongPollSession:
        response = self.api.get_long_poll_server()
        try:
            return LongPollSession(
                server=str(response["server"]),
                key=str(response["key"]),
                cursor=str(response["ts"]),
            )
        except (KeyError, TypeError) as exc:
            raise VkApiError(f"groups.getLongPollServer: неполный ответ {response!r}") from exc

    def acquire_session(self) -> LongPollSession:
        """Получить новую сессию, старый курсор отбрасывается."""
        self.session = None
        for attempt in range(1, self.max_attempts + 1):
            if self.stop_event.is_set():
                break
            try:
                session = self._request_session()
            except VkApiError as exc:
                self.state = SessionState.RECONNECTING
                delay = self.backoff_delay(attempt)
                log.error(
                    f"Не удалось получить Long Poll сервер (попытка {attempt}/{self.max_attempts}): {exc}. "
                    f"Повтор через {delay:.0f} сек."
                )
                if attempt < self.max_attempts:
                    self.stop_event.wait(delay)
                continue

            self.session = session
            self.state = SessionState.CONNECTED
            log.info(f"Long Poll сессия получена, ts={session.cursor}")
            return session

        if self.stop_event.is_set():
            self.state = SessionState.STOPPED
            raise SessionAcquisitionError("Получение сессии прервано остановкой бота")
        raise SessionAcquisitionError(f"Не удалось получить Long Poll сервер за {self.max_attempts} попыток")

    def ensure_session(self) -> LongPollSession:
        if self.session is None:
            return self.acquire_session()
        return self.session

    # ========================================================================
    # POLL
    # ========================================================================

    def poll(self, session: Optional[LongPollSession] = None) -> PollResult:
        """Один запрос ``a_check``.

        Raises:
            SessionExpiredError: сервер вернул ``failed``, сессия сброшена
            LongPollTransportError: сеть или неразборчивый ответ, курсор не изменён
        """
        session = session or self.ensure_session()
        params = {"act": "a_check", "key": session.key, "ts": session.cursor, "wait": self.wait}
        try:
            response = self.http.get(session.server, params=params, timeout=self.wait + 5)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as exc:
            raise LongPollTransportError(f"Ошибка Long Poll запроса: {exc}") from exc
        except ValueError as exc:
            raise LongPollTransportError("Ошибка Long Poll запроса: некорректный JSON") from exc

        if not isinstance(data, dict):
            raise LongPollTransportError("Ошибка Long Poll запроса: неожиданный тип ответа")

        if "failed" in data:
            self.session = None
            self.state = SessionState.RECONNECTING
            raise SessionExpiredError(data["failed"])

        if "ts" in data:
            session.cursor = str(data["ts"])

        events = data.get("updates") or []
        return PollResult(events=list(events), cursor=session.cursor)

    def stop(self) -> None:
        self.stop_event.set()
        self.state = SessionState.STOPPED


def iter_new_messages(events: List[Dict[str, Any]]) -> Iterator[Dict[str, Any]]:
    """Сообщения из событий ``message_new``, остальные типы пропускаются."""
    for event in events:
        if event.get("type") != "message_new":
            continue
        message = (event.get("object") or {}).get("message")
        if message:
            yield message
