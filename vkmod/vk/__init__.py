# Copyright (c) 2025 sprowii
"""Транспорт VK: исходящие вызовы API и Long Poll."""

from vkmod.vk.api import VkApi, VkApiError
from vkmod.vk.longpoll import (
    LongPollSession,
    LongPollSessionManager,
    LongPollTransportError,
    PollResult,
    SessionAcquisitionError,
    SessionExpiredError,
    SessionState,
    iter_new_messages,
)

__all__ = [
    "VkApi",
    "VkApiError",
    "LongPollSession",
    "LongPollSessionManager",
    "LongPollTransportError",
    "PollResult",
    "SessionAcquisitionError",
    "SessionExpiredError",
    "SessionState",
    "iter_new_messages",
]
