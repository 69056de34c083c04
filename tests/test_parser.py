"""Tests for forensim.parser module."""

from forensim.parser import parse_command_line, tokenize


class TestTokenize:
    """Tests for the whitespace/quote tokenizer."""

    def test_whitespace_split(self):
        """Runs of whitespace separate tokens."""
        assert tokenize("ls   -a\t/tmp") == ["ls", "-a", "/tmp"]

    def test_double_quotes_group(self):
        """Double quotes keep spaces inside one token."""
        assert tokenize('echo "hello world" x') == ["echo", "hello world", "x"]

    def test_single_quotes_literal_by_default(self):
        """Single quotes are ordinary characters for console lines."""
        assert tokenize("echo 'a b'") == ["echo", "'a", "b'"]

    def test_custom_quote_set(self):
        """Both quote styles group when requested."""
        assert tokenize("cd 'my dir'", quotes="\"'") == ["cd", "my dir"]

    def test_unterminated_quote_runs_to_end(self):
        """An open quote swallows the rest of the line."""
        assert tokenize('echo "a b') == ["echo", "a b"]


class TestParseCommandLine:
    """Tests for command and redirection parsing."""

    def test_empty_line(self):
        """Blank input parses to an empty command."""
        assert parse_command_line("   ").is_empty
        assert parse_command_line("").is_empty

    def test_command_and_args(self):
        """First token is the program, the rest are arguments."""
        parsed = parse_command_line("cat a.txt b.txt")
        assert parsed.command == "cat"
        assert parsed.args == ["a.txt", "b.txt"]
        assert parsed.redirect is None

    def test_truncating_redirect(self):
        """'>' takes the next token as the destination."""
        parsed = parse_command_line("echo hi > out.txt")
        assert parsed.args == ["hi"]
        assert parsed.redirect.path == "out.txt"
        assert parsed.redirect.append is False

    def test_appending_redirect(self):
        """'>>' appends."""
        parsed = parse_command_line("echo bye >> out.txt")
        assert parsed.redirect.path == "out.txt"
        assert parsed.redirect.append is True

    def test_redirect_ends_arguments(self):
        """Tokens after the destination are dropped."""
        parsed = parse_command_line("echo a > f b c")
        assert parsed.args == ["a"]
        assert parsed.redirect.path == "f"

    def test_missing_destination(self):
        """A trailing '>' yields an empty destination."""
        parsed = parse_command_line("echo a >")
        assert parsed.redirect is not None
        assert parsed.redirect.path == ""

    def test_quoted_operator_is_an_argument(self):
        """A quoted '>' is plain text, not a redirect."""
        parsed = parse_command_line('echo ">" x')
        assert parsed.args == [">", "x"]
        assert parsed.redirect is None
        assert parse_command_line('echo a ">>" b').args == ["a", ">>", "b"]
