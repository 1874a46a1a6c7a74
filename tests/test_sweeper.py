"""Tests for the periodic mute expiry sweep."""

from conftest import PEER_A, PEER_B, USER, sent_texts
from vkmod.moderation.sweeper import ExpirySweeper

EXPIRED_NOTICE = "🔊 У пользователя [id777|User777] закончился мут."


class TestExpirySweeper:
    def test_expired_mute_is_announced_once_per_chat(self, store, api, clock):
        store.add_unified_chat(PEER_A)
        store.add_unified_chat(PEER_B)
        store.set_mute(USER, clock() + 30)
        sweeper = ExpirySweeper(store, api, interval=10, clock=clock)

        clock.advance(31)
        assert sweeper.run() == [USER]
        assert sweeper.run() == []

        assert sent_texts(api, PEER_A) == [EXPIRED_NOTICE]
        assert sent_texts(api, PEER_B) == [EXPIRED_NOTICE]
        assert store.get_mutes() == {}

    def test_active_mutes_are_kept(self, store, api, clock):
        store.set_mute(USER, clock() + 30)
        sweeper = ExpirySweeper(store, api, interval=10, clock=clock)

        assert sweeper.run() == []
        assert store.is_muted(USER)

    def test_interval_is_respected(self, store, api, clock):
        sweeper = ExpirySweeper(store, api, interval=10, clock=clock)

        assert sweeper.is_due()
        sweeper.maybe_run()
        clock.advance(5)
        assert not sweeper.is_due()
        clock.advance(5)
        assert sweeper.is_due()

    def test_storage_failure_is_logged(self, store, api, clock, fake_redis):
        store.set_mute(USER, clock() - 1)
        fake_redis.fail_writes = True
        sweeper = ExpirySweeper(store, api, interval=10, clock=clock)

        assert sweeper.run() == []
        api.send_message.assert_not_called()
