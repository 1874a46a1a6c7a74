"""
Pytest configuration and fixtures for vkmod tests.

Redis is replaced with an in-memory double, the VK API with a MagicMock,
and time with a manually advanced clock. No network access is needed.
"""

from typing import Dict, List, Optional, Set
from unittest.mock import MagicMock

import pytest
import redis

from vkmod.bot.loop import BotContext
from vkmod.config import BotConfig
from vkmod.vk.api import VkApi

PEER_A = 2000000001
PEER_B = 2000000002
PEER_C = 2000000003

SUPER_ADMIN = 1
ADMIN = 3
MODERATOR = 2
USER = 777


class FakeClock:
    """Callable clock advanced by hand."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePipeline:
    def __init__(self, owner: "FakeRedis"):
        self.owner = owner
        self.commands = []

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def lpush(self, key, value):
        self.commands.append(("lpush", key, value))

    def ltrim(self, key, start, end):
        self.commands.append(("ltrim", key, start, end))

    def execute(self):
        self.owner._check_writes()
        for command in self.commands:
            if command[0] == "lpush":
                self.owner.lists.setdefault(command[1], []).insert(0, command[2])
            else:
                _, key, start, end = command
                self.owner.lists[key] = self.owner.lists.get(key, [])[start:end + 1]
        self.commands = []


class FakeRedis:
    """Subset of redis.Redis used by StateStore."""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.lists: Dict[str, List[str]] = {}
        self.fail_writes = False
        self.fail_reads: Set[str] = set()
        self.writes: List[str] = []

    def _check_writes(self) -> None:
        if self.fail_writes:
            raise redis.ConnectionError("redis is down")

    def get(self, key: str) -> Optional[str]:
        if key in self.fail_reads:
            raise redis.ConnectionError("redis read timed out")
        return self.values.get(key)

    def set(self, key: str, value: str) -> bool:
        self._check_writes()
        self.writes.append(key)
        self.values[key] = value
        return True

    def delete(self, key: str) -> int:
        return int(self.values.pop(key, None) is not None)

    def lrange(self, key: str, start: int, end: int) -> List[str]:
        items = self.lists.get(key, [])
        return items[start:] if end == -1 else items[start:end + 1]

    def pipeline(self) -> FakePipeline:
        return FakePipeline(self)


def make_api() -> MagicMock:
    api = MagicMock(spec=VkApi)
    api.get_user_mention.side_effect = lambda user_id: f"[id{user_id}|User{user_id}]"
    api.send_message.return_value = True
    api.remove_chat_user.return_value = True
    api.delete_message.return_value = True
    api.get_chat_title.return_value = "Тестовая беседа"
    return api


def sent_texts(api: MagicMock, peer_id: Optional[int] = None) -> List[str]:
    """Texts passed to send_message, optionally for one peer."""
    return [
        call.args[1]
        for call in api.send_message.call_args_list
        if peer_id is None or call.args[0] == peer_id
    ]


def make_message(peer_id: int, from_id: int, text: str = "", **extra) -> dict:
    message = {
        "peer_id": peer_id,
        "from_id": from_id,
        "text": text,
        "conversation_message_id": 42,
    }
    message.update(extra)
    return message


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def api():
    return make_api()


@pytest.fixture
def config():
    return BotConfig(
        group_token="test-token",
        group_id=123,
        admin_ids=[SUPER_ADMIN, ADMIN],
        moderator_ids=[MODERATOR],
        bad_words=["плохоеслово"],
        longpoll_retry_delay=0,
        sweep_interval=10,
    )


@pytest.fixture
def context(config, fake_redis, api, clock):
    return BotContext.build(config, fake_redis, api=api, clock=clock)


@pytest.fixture
def store(context):
    return context.store


@pytest.fixture
def engine(context):
    return context.engine


@pytest.fixture
def router(context):
    return context.router
