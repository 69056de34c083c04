"""Command line tokenizer for the learner console.

Only a tiny slice of shell grammar is understood: whitespace separated
tokens, double quotes for grouping, and a single ``>`` / ``>>`` output
redirection. Parsing never fails.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


@dataclass
class Redirect:
    path: str
    append: bool = False


@dataclass
class ParsedCommand:
    command: str = ""
    args: List[str] = field(default_factory=list)
    redirect: Optional[Redirect] = None

    @property
    def is_empty(self) -> bool:
        return not self.command


def _split_tokens(line: str, quotes: str) -> List[Tuple[str, bool]]:
    tokens: List[Tuple[str, bool]] = []
    current = ""
    quoted = False
    active_quote: Optional[str] = None
    for ch in line:
        if active_quote is None and ch in quotes:
            active_quote = ch
            quoted = True
            continue
        if ch == active_quote:
            active_quote = None
            continue
        if active_quote is None and ch.isspace():
            if current:
                tokens.append((current, quoted))
            current = ""
            quoted = False
            continue
        current += ch
    if current:
        tokens.append((current, quoted))
    return tokens


def tokenize(line: str, quotes: str = '"') -> List[str]:
    """Split ``line`` on whitespace, keeping quoted runs together.

    Quote characters toggle grouping and are dropped from the token.
    An unterminated quote runs to the end of the line.
    """
    return [token for token, _ in _split_tokens(line, quotes)]


def parse_command_line(line: str) -> ParsedCommand:
    """Parse a raw line into program name, arguments and redirection.

    An unquoted ``>`` or ``>>`` takes the next token as the destination
    and ends the argument list. A missing destination yields an empty
    redirect path.
    """
    tokens = _split_tokens(line or "", '"')
    if not tokens:
        return ParsedCommand()

    command, rest = tokens[0][0], tokens[1:]
    args: List[str] = []
    redirect: Optional[Redirect] = None
    for index, (token, quoted) in enumerate(rest):
        if not quoted and token in (">", ">>"):
            target = rest[index + 1][0] if index + 1 < len(rest) else ""
            redirect = Redirect(path=target, append=token == ">>")
            break
        args.append(token)
    return ParsedCommand(command=command, args=args, redirect=redirect)
