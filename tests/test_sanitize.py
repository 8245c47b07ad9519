"""Tests for inbound text sanitizing, mentions and target helpers."""

import pytest

from ircbridge.communication.sanitize import (
    MAX_CONTENT_LENGTH,
    extract_mention,
    format_target,
    is_channel,
    is_valid_channel,
    is_valid_content,
    is_valid_nickname,
    looks_like_target,
    normalize_target,
    sanitize,
    strip_formatting,
)


class TestStripFormatting:
    """Colour codes and control bytes never reach the agent."""

    def test_plain_text_untouched(self):
        assert strip_formatting("hello world") == "hello world"

    def test_bold_and_underline_removed(self):
        assert strip_formatting("\x02bold\x02 and \x1funder\x1f") == "bold and under"

    def test_colour_codes_removed(self):
        assert strip_formatting("\x0304,01red on black\x03 plain") == "red on black plain"

    def test_bare_colour_reset_removed(self):
        assert strip_formatting("a\x03b") == "ab"

    def test_surrounding_whitespace_trimmed(self):
        assert strip_formatting("   hi   ") == "hi"

    def test_del_removed(self):
        assert strip_formatting("a\x7fb") == "ab"

    def test_tab_and_newline_kept_inside(self):
        assert strip_formatting("a\tb\nc") == "a\tb\nc"


class TestSanitize:
    """CTCP classification."""

    def test_plain_message(self):
        result = sanitize("hello")
        assert result.clean_text == "hello"
        assert result.is_out_of_band is False
        assert result.ob_command is None

    def test_action_payload_becomes_text(self):
        result = sanitize("\x01ACTION waves\x01")
        assert result.is_out_of_band is True
        assert result.ob_command == "ACTION"
        assert result.is_action is True
        assert result.clean_text == "waves"

    def test_action_without_closing_delimiter(self):
        result = sanitize("\x01ACTION dances")
        assert result.is_action is True
        assert result.clean_text == "dances"

    def test_other_ctcp_has_empty_text(self):
        result = sanitize("\x01VERSION\x01")
        assert result.is_out_of_band is True
        assert result.ob_command == "VERSION"
        assert result.is_action is False
        assert result.clean_text == ""

    def test_ctcp_ping_payload_reported(self):
        result = sanitize("\x01PING 12345\x01")
        assert result.ob_command == "PING"
        assert result.ob_payload == "12345"

    def test_action_payload_formatting_stripped(self):
        result = sanitize("\x01ACTION \x02waves\x02\x01")
        assert result.clean_text == "waves"


class TestContentValidity:

    def test_normal_text_valid(self):
        assert is_valid_content("hello") is True

    def test_empty_and_blank_invalid(self):
        assert is_valid_content("") is False
        assert is_valid_content("   ") is False

    def test_length_limit(self):
        assert is_valid_content("a" * MAX_CONTENT_LENGTH) is True
        assert is_valid_content("a" * (MAX_CONTENT_LENGTH + 1)) is False

    def test_nul_invalid(self):
        assert is_valid_content("a\x00b") is False


class TestExtractMention:
    """Mention detection against the bot's nick."""

    @pytest.mark.parametrize("text", ["bot: hello", "bot, hello", "@bot hello", "BOT: hello"])
    def test_leading_mentions(self, text):
        result = extract_mention(text, "bot")
        assert result.mentioned is True
        assert result.clean_text == "hello"

    def test_inline_at_mention(self):
        result = extract_mention("hey @bot how are you", "bot")
        assert result.mentioned is True
        assert result.clean_text == "hey how are you"

    def test_no_mention(self):
        result = extract_mention("hello everyone", "bot")
        assert result.mentioned is False
        assert result.clean_text == "hello everyone"

    def test_longer_nick_is_not_a_mention(self):
        result = extract_mention("@botany is fun", "bot")
        assert result.mentioned is False

    def test_nick_without_separator_is_not_a_mention(self):
        result = extract_mention("bot hello", "bot")
        assert result.mentioned is False
        assert result.clean_text == "bot hello"

    def test_whitespace_collapsed(self):
        assert extract_mention("a   b", "bot").clean_text == "a b"

    def test_regex_chars_in_nick(self):
        result = extract_mention("[bot]: hi", "[bot]")
        assert result.mentioned is True
        assert result.clean_text == "hi"


class TestTargets:

    def test_is_channel(self):
        assert is_channel("#chan") is True
        assert is_channel("&local") is True
        assert is_channel("alice") is False

    def test_valid_nicknames(self):
        assert is_valid_nickname("alice") is True
        assert is_valid_nickname("[away]_") is True
        assert is_valid_nickname("1abc") is False
        assert is_valid_nickname("") is False
        assert is_valid_nickname("a" * 17) is False

    def test_valid_channels(self):
        assert is_valid_channel("#general") is True
        assert is_valid_channel("#") is False
        assert is_valid_channel("#has space") is False
        assert is_valid_channel("#a,b") is False
        assert is_valid_channel("general") is False

    def test_normalize_target(self):
        assert normalize_target("  Alice ") == "alice"

    def test_format_target_lowercases_channels_only(self):
        assert format_target("#General") == "#general"
        assert format_target("Alice") == "Alice"

    def test_looks_like_target(self):
        assert looks_like_target("#chan") is True
        assert looks_like_target("alice") is True
        assert looks_like_target("not a target") is False
