"""Tests for cross-chat propagation between unified chats."""

from unittest.mock import patch

import pytest

from conftest import MODERATOR, PEER_A, PEER_B, PEER_C, USER, sent_texts
from vkmod.moderation.models import Origin


@pytest.fixture
def unified(store):
    for peer in (PEER_A, PEER_B, PEER_C):
        store.add_unified_chat(peer)
    return [PEER_A, PEER_B, PEER_C]


def calls_for_peer(api, peer_id):
    """Outbound calls addressed to one chat."""
    count = 0
    for method in (api.send_message, api.remove_chat_user, api.delete_message):
        count += sum(1 for call in method.call_args_list if call.args[0] == peer_id)
    return count


class TestPropagation:
    def test_ban_reaches_every_unified_chat(self, engine, store, api, unified):
        engine.ban(PEER_A, USER, admin_id=MODERATOR)

        assert store.is_banned(USER)
        removed_from = [call.args[0] for call in api.remove_chat_user.call_args_list]
        assert sorted(removed_from) == sorted(unified)

        assert sent_texts(api, PEER_A) == ["⛔ Пользователь [id777|User777] заблокирован в беседе"]
        for peer in (PEER_B, PEER_C):
            assert sent_texts(api, peer) == ["🔄 Синхронизация: пользователь [id777|User777] заблокирован"]

    def test_call_bound_per_chat(self, engine, api, unified):
        engine.ban(PEER_A, USER, admin_id=MODERATOR)

        total = sum(calls_for_peer(api, peer) for peer in (PEER_B, PEER_C))
        assert total <= 2 * (len(unified) - 1)

    def test_replays_do_not_propagate_again(self, engine, unified):
        with patch.object(engine.synchronizer, "propagate", wraps=engine.synchronizer.propagate) as propagate:
            engine.mute(PEER_A, USER, 60, admin_id=MODERATOR)

        propagate.assert_called_once()

    def test_propagate_rejects_replayed_origin(self, engine, unified):
        with pytest.raises(ValueError):
            engine.synchronizer.propagate("ban", USER, PEER_A, Origin.replayed(PEER_B))

    def test_disabled_unified_mode(self, engine, config, api, unified):
        config.unified_mode = False
        engine.ban(PEER_A, USER, admin_id=MODERATOR)

        assert sent_texts(api, PEER_B) == []
        api.remove_chat_user.assert_called_once_with(PEER_A, USER)

    def test_chat_failure_does_not_stop_fanout(self, engine, api, unified):
        def remove(peer_id, user_id):
            if peer_id == PEER_B:
                raise RuntimeError("boom")
            return True

        api.remove_chat_user.side_effect = remove
        engine.ban(PEER_A, USER, admin_id=MODERATOR)

        assert sent_texts(api, PEER_B) == []
        assert sent_texts(api, PEER_C) == ["🔄 Синхронизация: пользователь [id777|User777] заблокирован"]


class TestReplaySemantics:
    def test_warn_is_counted_per_chat(self, engine, store, api, unified):
        engine.warn(PEER_A, USER, "флуд", admin_id=MODERATOR)

        for peer in unified:
            assert store.get_warn_count(peer, USER) == 1
        assert sent_texts(api, PEER_B) == [
            "🔄 Синхронизация: пользователь [id777|User777] получил предупреждение. Причина: флуд"
        ]

    def test_replayed_warn_resets_silently_at_max(self, engine, store, api, unified):
        for _ in range(3):
            engine.warn(PEER_A, USER, admin_id=MODERATOR)

        assert store.is_muted(USER)
        for peer in unified:
            assert store.get_warn_count(peer, USER) == 0
        escalation_notices = [t for t in sent_texts(api, PEER_B) if "превышение" in t]
        assert escalation_notices == []

    def test_unmute_propagates(self, engine, store, api, unified):
        engine.mute(PEER_A, USER, 60, admin_id=MODERATOR)
        api.send_message.reset_mock()

        engine.unmute(PEER_A, USER, admin_id=MODERATOR)

        assert not store.is_muted(USER)
        assert sent_texts(api, PEER_C) == ["🔄 Синхронизация: с пользователя [id777|User777] снята заглушка"]

    def test_nickname_is_copied_to_other_chats(self, engine, store, unified):
        engine.set_nickname(PEER_A, USER, "Вася", admin_id=1)

        for peer in unified:
            assert store.get_nickname(peer, USER) == "Вася"
