# Copyright (c) 2025 sprowii
"""Цикл событий бота.

Один поток: снятие истёкших мутов, затем один запрос Long Poll и
обработка всех полученных сообщений. Остановка через ``stop_event``.
"""
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import redis

from vkmod.config import BotConfig
from vkmod.logging_config import log
from vkmod.moderation.commands import CommandRouter
from vkmod.moderation.engine import ModerationEngine
from vkmod.moderation.permissions import Permissions
from vkmod.moderation.storage import StateStore
from vkmod.moderation.sweeper import ExpirySweeper
from vkmod.vk.api import VkApi
from vkmod.vk.longpoll import (
    LongPollSessionManager,
    LongPollTransportError,
    SessionAcquisitionError,
    SessionExpiredError,
    iter_new_messages,
)


@dataclass
class BotContext:
    """Всё состояние процесса, которым владеет цикл событий."""
    config: BotConfig
    store: StateStore
    api: VkApi
    engine: ModerationEngine
    router: CommandRouter
    sweeper: ExpirySweeper
    sessions: LongPollSessionManager
    stop_event: threading.Event = field(default_factory=threading.Event)

    @classmethod
    def build(
        cls,
        config: BotConfig,
        client: redis.Redis,
        api: Optional[VkApi] = None,
        clock: Callable[[], float] = time.time,
        stop_event: Optional[threading.Event] = None,
    ) -> "BotContext":
        stop_event = stop_event or threading.Event()
        api = api or VkApi(config)
        store = StateStore(
            client,
            seed_admins=config.admin_ids,
            seed_moderators=config.moderator_ids,
            clock=clock,
        )
        permissions = Permissions(store, config.effective_super_admins())
        engine = ModerationEngine(config, store, api, permissions, clock=clock)
        sessions = LongPollSessionManager(
            api,
            wait=config.longpoll_wait,
            retry_delay=config.longpoll_retry_delay,
            backoff_cap=config.longpoll_backoff_cap,
            max_attempts=config.longpoll_max_attempts,
            stop_event=stop_event,
        )
        return cls(
            config=config,
            store=store,
            api=api,
            engine=engine,
            router=CommandRouter(engine),
            sweeper=ExpirySweeper(store, api, config.sweep_interval, clock),
            sessions=sessions,
            stop_event=stop_event,
        )


class EventLoop:
    def __init__(self, context: BotContext):
        self.context = context

    @property
    def stopped(self) -> bool:
        return self.context.stop_event.is_set()

    def _pause(self) -> None:
        self.context.stop_event.wait(self.context.config.longpoll_retry_delay)

    def run_once(self) -> int:
        """Одна итерация цикла. Возвращает количество обработанных сообщений."""
        ctx = self.context
        if ctx.sweeper.is_due():
            ctx.sweeper.run()
            ctx.engine.flood.cleanup()

        try:
            result = ctx.sessions.poll()
        except SessionExpiredError as exc:
            log.warning(f"{exc}, получаем новую сессию")
            return 0
        except LongPollTransportError as exc:
            log.error(str(exc))
            self._pause()
            return 0
        except SessionAcquisitionError as exc:
            log.error(str(exc))
            if not self.stopped:
                self._pause()
            return 0

        handled = 0
        for message in iter_new_messages(result.events):
            try:
                ctx.router.handle_message(message)
            except Exception:
                log.exception("Ошибка обработки сообщения")
            handled += 1
        return handled

    def run(self) -> None:
        log.info("Бот запущен, ожидаем события Long Poll")
        while not self.stopped:
            self.run_once()
        self.context.sessions.stop()
        log.info("Бот остановлен")
