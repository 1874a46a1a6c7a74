"""Tests for the outbound VK API client."""

from unittest.mock import MagicMock

import pytest
import requests

from vkmod.config import VK_API_VERSION
from vkmod.vk.api import VkApi, VkApiError


def make_api(config, payload=None):
    session = MagicMock()
    session.post.return_value.json.return_value = payload
    return VkApi(config, session=session), session


class TestCall:
    def test_returns_response_field(self, config):
        api, session = make_api(config, {"response": {"ok": 1}})

        assert api.call("users.get", user_ids="1") == {"ok": 1}
        data = session.post.call_args.kwargs["data"]
        assert data["v"] == VK_API_VERSION
        assert data["access_token"] == "test-token"

    def test_error_field_raises(self, config):
        api, _ = make_api(config, {"error": {"error_code": 15, "error_msg": "Access denied"}})

        with pytest.raises(VkApiError) as excinfo:
            api.call("messages.removeChatUser")
        assert excinfo.value.code == 15

    def test_network_error_raises(self, config):
        api, session = make_api(config)
        session.post.side_effect = requests.Timeout("slow")

        with pytest.raises(VkApiError):
            api.call("messages.send")


class TestMethods:
    def test_remove_chat_user_converts_peer(self, config):
        api, session = make_api(config, {"response": 1})

        assert api.remove_chat_user(2000000005, 777)
        data = session.post.call_args.kwargs["data"]
        assert (data["chat_id"], data["user_id"]) == (5, 777)

    def test_remove_from_private_dialog_is_refused(self, config):
        api, session = make_api(config, {"response": 1})

        assert not api.remove_chat_user(777, 777)
        session.post.assert_not_called()

    def test_send_message_reports_failure(self, config):
        api, _ = make_api(config, {"error": {"error_code": 7, "error_msg": "denied"}})
        assert api.send_message(2000000001, "привет") is False

    def test_long_message_is_split(self, config):
        api, session = make_api(config, {"response": 1})
        api.send_message(2000000001, ("a" * 3000 + "\n") * 3)
        assert session.post.call_count >= 2

    def test_mention_is_cached(self, config):
        api, session = make_api(config, {"response": [{"first_name": "Вася", "last_name": "Пупкин"}]})

        assert api.get_user_mention(777) == "[id777|Вася Пупкин]"
        assert api.get_user_mention(777) == "[id777|Вася Пупкин]"
        assert session.post.call_count == 1

    def test_chat_title(self, config):
        api, _ = make_api(config, {"response": {"items": [{"chat_settings": {"title": "Флудилка"}}]}})
        assert api.get_chat_title(2000000001) == "Флудилка"
