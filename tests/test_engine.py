"""Tests for ModerationEngine verbs and message screening."""

from conftest import ADMIN, MODERATOR, PEER_A, SUPER_ADMIN, USER, make_message, sent_texts
from vkmod.moderation.engine import ADMIN_PROTECTED_MESSAGE, STORAGE_FAILED_MESSAGE
from vkmod.moderation.models import Origin
from vkmod.security import data_protection


class TestMute:
    def test_mute_and_expiry(self, engine, store, clock, api):
        result = engine.mute(PEER_A, USER, 60, admin_id=MODERATOR)

        assert result.applied
        assert store.is_muted(USER)
        assert "🔇 Пользователь [id777|User777] заглушен на 1 мин." in sent_texts(api, PEER_A)

        clock.advance(61)
        assert not store.is_muted(USER)

    def test_default_duration(self, engine, store, clock, config):
        engine.mute(PEER_A, USER, admin_id=MODERATOR)
        assert store.get_mutes()[USER] == clock() + config.flood_mute_duration

    def test_admin_target_is_rejected(self, engine, store, api):
        result = engine.mute(PEER_A, ADMIN, 60, admin_id=SUPER_ADMIN)

        assert not result.applied
        assert store.get_mutes() == {}
        assert sent_texts(api, PEER_A) == [ADMIN_PROTECTED_MESSAGE]

    def test_regular_user_is_denied(self, engine, store, api):
        result = engine.mute(PEER_A, 888, 60, admin_id=USER)

        assert not result.applied
        assert store.get_mutes() == {}
        assert sent_texts(api, PEER_A) == ["⛔ Только администраторы и модераторы могут использовать эту команду"]

    def test_automatic_origin_skips_authorization(self, engine, store):
        result = engine.mute(PEER_A, USER, 60, origin=Origin.automatic())
        assert result.applied
        assert store.is_muted(USER)

    def test_unmute_without_mute(self, engine, api):
        result = engine.unmute(PEER_A, USER, admin_id=MODERATOR)

        assert not result.applied
        assert sent_texts(api, PEER_A) == [
            "❌ Пользователь [id777|User777] не находится в списке заглушенных"
        ]

    def test_storage_failure_sends_no_confirmation(self, engine, fake_redis, api):
        fake_redis.fail_writes = True

        result = engine.mute(PEER_A, USER, 60, admin_id=MODERATOR)

        assert not result.applied
        assert result.error
        assert sent_texts(api, PEER_A) == [STORAGE_FAILED_MESSAGE]


class TestBanAndKick:
    def test_ban_removes_user_and_blocks_repeat(self, engine, store, api):
        assert engine.ban(PEER_A, USER, admin_id=MODERATOR).applied
        assert store.is_banned(USER)
        api.remove_chat_user.assert_called_once_with(PEER_A, USER)

        second = engine.ban(PEER_A, USER, admin_id=MODERATOR)
        assert not second.applied
        assert sent_texts(api, PEER_A)[-1] == "❌ Пользователь [id777|User777] уже заблокирован"

    def test_unban(self, engine, store):
        engine.ban(PEER_A, USER, admin_id=MODERATOR)
        assert engine.unban(PEER_A, USER, admin_id=MODERATOR).applied
        assert not store.is_banned(USER)
        assert not engine.unban(PEER_A, USER, admin_id=MODERATOR).applied

    def test_kick_sets_timed_reentry_ban(self, engine, store, clock, config, api):
        engine.kick(PEER_A, USER, admin_id=MODERATOR)

        assert store.is_kicked(USER)
        api.remove_chat_user.assert_called_once_with(PEER_A, USER)
        clock.advance(config.kick_duration + 1)
        assert not store.is_kicked(USER)


class TestWarns:
    def test_third_warn_mutes_and_resets(self, engine, store, api):
        for _ in range(3):
            engine.warn(PEER_A, USER, "спам", admin_id=MODERATOR)

        assert store.is_muted(USER)
        assert store.get_warn_count(PEER_A, USER) == 0
        texts = sent_texts(api, PEER_A)
        assert any("(3/3)" in text for text in texts)
        assert texts[-1] == "🔇 Пользователь [id777|User777] заглушен за превышение количества предупреждений"

    def test_escalation_against_admin_is_not_announced(self, engine, store, api):
        results = [engine.warn(PEER_A, ADMIN, admin_id=SUPER_ADMIN) for _ in range(3)]

        assert results[-1].applied
        assert not results[-1].escalated
        assert not store.is_muted(ADMIN)
        assert store.get_warn_count(PEER_A, ADMIN) == 0
        texts = sent_texts(api, PEER_A)
        assert ADMIN_PROTECTED_MESSAGE in texts
        assert not any("превышение" in text for text in texts)

    def test_unwarn_at_zero(self, engine, store, api):
        result = engine.unwarn(PEER_A, USER, admin_id=MODERATOR)

        assert not result.applied
        assert store.get_warn_count(PEER_A, USER) == 0
        assert sent_texts(api, PEER_A) == ["❌ У пользователя [id777|User777] нет предупреждений"]

    def test_unwarn_reports_remaining(self, engine, api):
        engine.warn(PEER_A, USER, admin_id=MODERATOR)
        engine.unwarn(PEER_A, USER, admin_id=MODERATOR)
        assert sent_texts(api, PEER_A)[-1] == (
            "✅ С пользователя [id777|User777] снято предупреждение (осталось: 0/3)"
        )


class TestNickname:
    def test_only_admins_set_nicknames(self, engine, store):
        assert not engine.set_nickname(PEER_A, USER, "Вася", admin_id=MODERATOR).applied
        assert engine.set_nickname(PEER_A, USER, "Вася", admin_id=ADMIN).applied
        assert store.get_nickname(PEER_A, USER) == "Вася"


class TestModLog:
    def test_applied_actions_are_logged(self, engine, store):
        engine.ban(PEER_A, USER, admin_id=MODERATOR)
        engine.mute(PEER_A, 888, 60, origin=Origin.automatic())

        actions = store.load_mod_log(PEER_A)
        assert [a.action_type for a in actions] == ["mute", "ban"]
        assert actions[0].auto is True
        assert actions[1].admin_id == MODERATOR

    def test_entries_use_engine_clock(self, engine, store, clock):
        clock.advance(3600)

        engine.ban(PEER_A, USER, admin_id=MODERATOR)

        assert store.load_mod_log(PEER_A)[0].timestamp == clock()


class TestUnreadableState:
    def test_ban_aborts_when_table_is_unreadable(self, engine, store, fake_redis, api):
        store.add_ban(111)
        store.add_ban(222)
        fake_redis.fail_reads.add("vkmod:bans")

        result = engine.ban(PEER_A, USER, admin_id=MODERATOR)

        assert result.error
        assert not result.applied
        assert sent_texts(api, PEER_A) == [STORAGE_FAILED_MESSAGE]
        api.remove_chat_user.assert_not_called()
        fake_redis.fail_reads.clear()
        assert store.get_bans() == [111, 222]

    def test_nickname_aborts_when_table_cannot_be_decrypted(self, engine, store, fake_redis, api, monkeypatch):
        key = data_protection.generate_encryption_key()
        monkeypatch.setattr(data_protection, "_fernet", data_protection._build_fernet(key))
        engine.set_nickname(PEER_A, USER, "Вася", admin_id=ADMIN)
        stored = fake_redis.values["vkmod:nicknames"]
        monkeypatch.setattr(data_protection, "_fernet", None)

        result = engine.set_nickname(PEER_A, 888, "Петя", admin_id=ADMIN)

        assert result.error
        assert sent_texts(api, PEER_A)[-1] == STORAGE_FAILED_MESSAGE
        assert fake_redis.values["vkmod:nicknames"] == stored


class TestScreening:
    def test_muted_user_message_is_deleted(self, engine, store, clock, api):
        store.set_mute(USER, clock() + 60)

        assert engine.screen_message(make_message(PEER_A, USER, "привет"))
        api.delete_message.assert_called_once_with(PEER_A, 42)

    def test_flood_triggers_automatic_mute(self, engine, store, config, api):
        for _ in range(config.flood_max_messages):
            assert not engine.screen_message(make_message(PEER_A, USER, "текст"))

        assert engine.screen_message(make_message(PEER_A, USER, "текст"))
        assert store.is_muted(USER)
        api.delete_message.assert_called_once_with(PEER_A, 42)

    def test_bad_word_is_deleted_with_notice(self, engine, api):
        assert engine.screen_message(make_message(PEER_A, USER, "это ПлохоеСлово тут"))
        api.delete_message.assert_called_once_with(PEER_A, 42)
        assert sent_texts(api, PEER_A) == ["🚫 Сообщение содержит запрещённое слово, [id777|User777]"]

    def test_clean_message_passes(self, engine, api):
        assert not engine.screen_message(make_message(PEER_A, USER, "обычный текст"))
        api.delete_message.assert_not_called()


class TestJoinEnforcement:
    def test_banned_user_is_removed_again(self, engine, store, api):
        store.add_ban(USER)
        assert engine.enforce_on_join(PEER_A, USER)
        api.remove_chat_user.assert_called_once_with(PEER_A, USER)

    def test_kicked_user_is_removed_until_expiry(self, engine, store, clock, api):
        store.set_kick(USER, clock() + 60)
        assert engine.enforce_on_join(PEER_A, USER)

        clock.advance(61)
        assert not engine.enforce_on_join(PEER_A, USER)
