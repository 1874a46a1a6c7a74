"""Tests for the bad word, link and mention filters."""

from vkmod.config import BotConfig
from vkmod.moderation.content_filter import ContentFilter


def make_filter(**overrides):
    options = dict(group_token="t", group_id=1, admin_ids=[1], bad_words=["Редиска"], max_mentions=2)
    options.update(overrides)
    return ContentFilter(BotConfig(**options))


class TestContentFilter:
    def test_bad_word_substring_any_case(self):
        result = make_filter().check({"text": "ну ты и РЕДИСКАаа"})
        assert result.is_filtered
        assert result.reason == "bad_word"
        assert result.matched_word == "редиска"

    def test_link(self):
        assert make_filter().check({"text": "http://spam.example"}).reason == "link"

    def test_links_allowed_when_disabled(self):
        assert not make_filter(auto_delete_links=False).check({"text": "https://ok.example"}).is_filtered

    def test_too_many_mentions(self):
        message = {"text": "", "fwd_messages": [{}, {}], "reply_message": {"from_id": 5}}
        result = make_filter().check(message)
        assert result.reason == "mentions"
        assert result.notice == "🚫 Слишком много упоминаний в одном сообщении"

    def test_clean_message(self):
        assert not make_filter().check({"text": "добрый день"}).is_filtered
