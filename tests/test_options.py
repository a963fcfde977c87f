"""Option tokenizer tests."""

from __future__ import annotations

import pytest

from dart_vm_launcher.options import parse_int_before_slash, tokenize


class TestTokenize:
    """Shell-like tokenization of option strings."""

    @pytest.mark.parametrize("text", [None, "", "   ", "\t\n"])
    def test_empty_input(self, text):
        assert tokenize(text) == []

    def test_whitespace_separated(self):
        assert tokenize("--checked  --observe\tfoo") == ["--checked", "--observe", "foo"]

    def test_double_quotes_group(self):
        assert tokenize('--name "hello world" x') == ["--name", "hello world", "x"]

    def test_single_quotes_group_literally(self):
        assert tokenize("'a \\\" b' c") == ['a \\" b', "c"]

    def test_quotes_inside_token(self):
        assert tokenize('--define=KEY="a b"') == ["--define=KEY=a b"]

    def test_escapes_inside_double_quotes(self):
        assert tokenize('"say \\"hi\\"" "back\\\\slash"') == ['say "hi"', "back\\slash"]

    def test_backslash_escapes_space(self):
        assert tokenize("my\\ file.dart next") == ["my file.dart", "next"]

    def test_windows_path_kept(self):
        assert tokenize("--packages=C:\\work\\app\\.packages") == [
            "--packages=C:\\work\\app\\.packages"
        ]

    def test_empty_quoted_token(self):
        assert tokenize('a "" b') == ["a", "", "b"]

    def test_unterminated_quote_runs_to_end(self):
        assert tokenize('a "b c') == ["a", "b c"]

    def test_trailing_backslash_kept(self):
        assert tokenize("foo\\") == ["foo\\"]

    def test_deterministic(self):
        text = "--checked 'x y' \"z\""
        assert tokenize(text) == tokenize(text)


class TestParseIntBeforeSlash:
    """Port fragment parsing."""

    def test_plain_number(self):
        assert parse_int_before_slash("5858") == 5858

    def test_number_with_host(self):
        assert parse_int_before_slash("5858/0.0.0.0") == 5858

    @pytest.mark.parametrize("value", ["", "abc", "12ab", "/5858", "58 58", "5_858", "notanumber/1"])
    def test_invalid_raises_value_error(self, value: str):
        with pytest.raises(ValueError):
            parse_int_before_slash(value)
