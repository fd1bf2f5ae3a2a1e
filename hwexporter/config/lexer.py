"""
Tokenizer for the exporter configuration file.

The syntax is nginx-like:

    exporter {
        collect_interval 30s;   # comment
        counters "/etc/hwexporter/default-counters.csv";
        gpu_devices 0 1;
    }

Recognized tokens: identifiers, quoted strings, numbers, durations
(500ms, 30s, 5m, 1h, 1d), booleans (on/off/true/false), braces, semicolons
and the include keyword. Both # and /* */ comments are skipped.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator


class TokenType(Enum):
    """Token types produced by the lexer."""

    IDENTIFIER = auto()
    STRING = auto()
    NUMBER = auto()
    DURATION = auto()  # value is always in seconds
    BOOLEAN = auto()

    LBRACE = auto()
    RBRACE = auto()
    SEMICOLON = auto()

    INCLUDE = auto()
    EOF = auto()


@dataclass
class Token:
    """A single lexical token."""

    type: TokenType
    value: str | int | float | bool
    line: int
    column: int

    def __repr__(self) -> str:
        return f"Token({self.type.name}, {self.value!r}, {self.line}:{self.column})"


class LexerError(Exception):
    """Raised when the source cannot be tokenized."""

    def __init__(self, message: str, line: int, column: int):
        self.line = line
        self.column = column
        super().__init__(f"Line {line}, column {column}: {message}")


BOOLEANS = {"on": True, "off": False, "true": True, "false": False}

DURATION_UNITS = {
    "ms": 0.001,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}

PUNCTUATION = {
    "{": TokenType.LBRACE,
    "}": TokenType.RBRACE,
    ";": TokenType.SEMICOLON,
}

ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\"}


class Lexer:
    """Turns configuration source text into a stream of tokens."""

    def __init__(self, source: str, filename: str = "<string>"):
        self.source = source
        self.filename = filename
        self.pos = 0
        self.line = 1
        self.column = 1

    def _char(self, offset: int = 0) -> str:
        index = self.pos + offset
        return self.source[index] if index < len(self.source) else ""

    def _step(self) -> str:
        char = self._char()
        if not char:
            return ""
        self.pos += 1
        if char == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        return char

    def _skip_ignored(self) -> None:
        """Skip whitespace and both comment styles."""
        while True:
            char = self._char()
            if char and char in " \t\r\n":
                self._step()
            elif char == "#":
                while self._char() and self._char() != "\n":
                    self._step()
            elif char == "/" and self._char(1) == "*":
                line, column = self.line, self.column
                self._step()
                self._step()
                while not (self._char() == "*" and self._char(1) == "/"):
                    if not self._char():
                        raise LexerError("Unterminated comment", line, column)
                    self._step()
                self._step()
                self._step()
            else:
                return

    def _string(self) -> Token:
        line, column = self.line, self.column
        quote = self._step()
        chars: list[str] = []

        while True:
            char = self._step()
            if not char or char == "\n":
                raise LexerError("Unterminated string literal", line, column)
            if char == quote:
                break
            if char == "\\":
                escaped = self._step()
                if not escaped:
                    raise LexerError("Unterminated string literal", line, column)
                chars.append(ESCAPES.get(escaped, escaped))
            else:
                chars.append(char)

        return Token(TokenType.STRING, "".join(chars), line, column)

    def _number(self) -> Token:
        line, column = self.line, self.column
        start = self.pos
        while self._char().isdigit() or (self._char() == "." and "." not in self.source[start:self.pos]):
            self._step()
        digits = self.source[start:self.pos]

        unit_start = self.pos
        while self._char().isalpha():
            self._step()
        unit = self.source[unit_start:self.pos].lower()

        try:
            number = float(digits) if "." in digits else int(digits)
        except ValueError:
            raise LexerError(f"Invalid number: {digits}", line, column) from None

        if not unit:
            return Token(TokenType.NUMBER, number, line, column)

        if unit not in DURATION_UNITS:
            raise LexerError(f"Unknown duration unit: {unit}", line, column)

        return Token(TokenType.DURATION, number * DURATION_UNITS[unit], line, column)

    def _word(self) -> Token:
        line, column = self.line, self.column
        start = self.pos
        while self._char() and (self._char().isalnum() or self._char() in "_-."):
            self._step()
        word = self.source[start:self.pos]
        lowered = word.lower()

        if lowered in BOOLEANS:
            return Token(TokenType.BOOLEAN, BOOLEANS[lowered], line, column)
        if lowered == "include":
            return Token(TokenType.INCLUDE, word, line, column)
        return Token(TokenType.IDENTIFIER, word, line, column)

    def next_token(self) -> Token:
        """Return the next token, or an EOF token at the end of input."""
        self._skip_ignored()

        char = self._char()
        if not char:
            return Token(TokenType.EOF, "", self.line, self.column)

        if char in PUNCTUATION:
            token = Token(PUNCTUATION[char], char, self.line, self.column)
            self._step()
            return token

        if char in "\"'":
            return self._string()

        if char.isdigit():
            return self._number()

        if char.isalpha() or char == "_":
            return self._word()

        raise LexerError(f"Unexpected character: {char!r}", self.line, self.column)

    def __iter__(self) -> Iterator[Token]:
        while True:
            token = self.next_token()
            yield token
            if token.type == TokenType.EOF:
                return


def tokenize(source: str, filename: str = "<string>") -> list[Token]:
    """Tokenize a whole source string."""
    return list(Lexer(source, filename))
