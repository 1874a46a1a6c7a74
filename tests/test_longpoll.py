"""Tests for the long-poll session manager."""

import threading
from unittest.mock import MagicMock

import pytest
import requests

from vkmod.vk.api import VkApiError
from vkmod.vk.longpoll import (
    LongPollSessionManager,
    LongPollTransportError,
    SessionAcquisitionError,
    SessionExpiredError,
    SessionState,
    iter_new_messages,
)

SERVER = {"server": "https://lp.vk.com/wh1", "key": "secret", "ts": "10"}


def make_manager(response=None, max_attempts=3):
    api = MagicMock()
    api.get_long_poll_server.return_value = dict(SERVER)
    http = MagicMock()
    if response is not None:
        http.get.return_value.json.return_value = response
    manager = LongPollSessionManager(
        api, wait=25, retry_delay=0, backoff_cap=60, max_attempts=max_attempts, http=http
    )
    return manager, api, http


class TestSession:
    def test_acquire_session(self):
        manager, api, _ = make_manager()
        session = manager.acquire_session()

        assert (session.server, session.key, session.cursor) == ("https://lp.vk.com/wh1", "secret", "10")
        assert manager.state is SessionState.CONNECTED

    def test_acquire_retries_then_succeeds(self):
        manager, api, _ = make_manager()
        api.get_long_poll_server.side_effect = [VkApiError("down"), dict(SERVER)]

        assert manager.acquire_session().key == "secret"
        assert api.get_long_poll_server.call_count == 2

    def test_acquire_gives_up_after_max_attempts(self):
        manager, api, _ = make_manager(max_attempts=3)
        api.get_long_poll_server.side_effect = VkApiError("down")

        with pytest.raises(SessionAcquisitionError):
            manager.acquire_session()
        assert api.get_long_poll_server.call_count == 3
        assert manager.state is SessionState.RECONNECTING

    def test_malformed_server_response_is_retried(self):
        manager, api, _ = make_manager()
        api.get_long_poll_server.side_effect = [{"server": "x"}, dict(SERVER)]
        assert manager.acquire_session().cursor == "10"

    def test_stop_interrupts_acquisition(self):
        manager, api, _ = make_manager()
        manager.stop_event = threading.Event()
        manager.stop_event.set()

        with pytest.raises(SessionAcquisitionError):
            manager.acquire_session()
        api.get_long_poll_server.assert_not_called()
        assert manager.state is SessionState.STOPPED

    def test_backoff_is_exponential_and_capped(self):
        manager = LongPollSessionManager(MagicMock(), retry_delay=5, backoff_cap=60)
        assert [manager.backoff_delay(n) for n in range(1, 7)] == [5, 10, 20, 40, 60, 60]


class TestPoll:
    def test_cursor_advances_on_empty_batch(self):
        manager, _, http = make_manager({"ts": "11", "updates": []})

        result = manager.poll()

        assert result.events == []
        assert result.cursor == "11"
        assert manager.session.cursor == "11"
        params = http.get.call_args.kwargs["params"]
        assert params == {"act": "a_check", "key": "secret", "ts": "10", "wait": 25}

    def test_failed_forces_reacquisition(self):
        manager, api, http = make_manager({"failed": 2})

        with pytest.raises(SessionExpiredError):
            manager.poll()
        assert manager.session is None
        assert manager.state is SessionState.RECONNECTING

        http.get.return_value.json.return_value = {"ts": "12", "updates": []}
        manager.poll()
        assert api.get_long_poll_server.call_count == 2

    def test_transport_error_keeps_cursor(self):
        manager, _, http = make_manager()
        manager.acquire_session()
        http.get.side_effect = requests.ConnectionError("reset")

        with pytest.raises(LongPollTransportError):
            manager.poll()
        assert manager.session.cursor == "10"

    def test_invalid_json_is_transport_error(self):
        manager, _, http = make_manager()
        http.get.return_value.json.side_effect = ValueError("not json")

        with pytest.raises(LongPollTransportError):
            manager.poll()


class TestEvents:
    def test_only_message_new_is_dispatched(self):
        events = [
            {"type": "message_new", "object": {"message": {"id": 1}}},
            {"type": "message_edit", "object": {"message": {"id": 2}}},
            {"type": "message_new", "object": {}},
        ]
        assert list(iter_new_messages(events)) == [{"id": 1}]
