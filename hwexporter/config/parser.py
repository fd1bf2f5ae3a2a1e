"""
Recursive descent parser for the exporter configuration syntax.

Grammar:
    document  := (block | directive | include)*
    block     := IDENTIFIER [STRING] '{' (block | directive | include)* '}'
    directive := IDENTIFIER value* ';'
    value     := STRING | NUMBER | DURATION | BOOLEAN | IDENTIFIER
    include   := 'include' STRING ';'
"""

import glob
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .lexer import Lexer, Token, TokenType

VALUE_TOKENS = (
    TokenType.STRING,
    TokenType.NUMBER,
    TokenType.DURATION,
    TokenType.BOOLEAN,
    TokenType.IDENTIFIER,
)


class ParseError(Exception):
    """Raised for syntax errors in the configuration."""

    def __init__(self, message: str, token: Token | None = None):
        self.token = token
        if token is not None:
            message = f"Line {token.line}, column {token.column}: {message}"
        super().__init__(message)


@dataclass
class Directive:
    """
    A named directive and its values.

    `gpu_devices 0 1;` parses to Directive(name="gpu_devices", values=[0, 1]).
    """

    name: str
    values: list[Any] = field(default_factory=list)
    line: int = 0

    @property
    def value(self) -> Any:
        """First value, or None for a bare directive."""
        return self.values[0] if self.values else None


@dataclass
class Block:
    """A `type ["name"] { ... }` section."""

    type: str
    name: str | None = None
    directives: list[Directive] = field(default_factory=list)
    blocks: list["Block"] = field(default_factory=list)
    line: int = 0

    def get_directive(self, name: str) -> Directive | None:
        return next((d for d in self.directives if d.name == name), None)

    def get_value(self, name: str, default: Any = None) -> Any:
        directive = self.get_directive(name)
        if directive is None or directive.value is None:
            return default
        return directive.value

    def get_values(self, name: str) -> list[Any] | None:
        """All values of a directive, or None when it is absent."""
        directive = self.get_directive(name)
        return None if directive is None else list(directive.values)

    def get_block(self, type_name: str) -> "Block | None":
        return next((b for b in self.blocks if b.type == type_name), None)

    def get_blocks(self, type_name: str) -> list["Block"]:
        return [b for b in self.blocks if b.type == type_name]


@dataclass
class ConfigDocument:
    """Top-level blocks and directives of a parsed file."""

    blocks: list[Block] = field(default_factory=list)
    directives: list[Directive] = field(default_factory=list)
    filename: str = "<string>"

    def get_block(self, type_name: str) -> Block | None:
        return next((b for b in self.blocks if b.type == type_name), None)

    def get_blocks(self, type_name: str) -> list[Block]:
        return [b for b in self.blocks if b.type == type_name]

    def merge(self, other: "ConfigDocument") -> None:
        self.blocks.extend(other.blocks)
        self.directives.extend(other.directives)


class ConfigParser:
    """Parses tokens from the lexer into a ConfigDocument."""

    def __init__(
        self,
        source: str,
        filename: str = "<string>",
        base_path: Path | None = None,
        included_files: frozenset[str] = frozenset(),
    ):
        self.lexer = Lexer(source, filename)
        self.filename = filename
        self.base_path = base_path or Path.cwd()
        self.included_files = included_files
        self.token = self.lexer.next_token()

    def _advance(self) -> Token:
        previous = self.token
        self.token = self.lexer.next_token()
        return previous

    def _expect(self, token_type: TokenType, message: str) -> Token:
        if self.token.type != token_type:
            raise ParseError(message, self.token)
        return self._advance()

    def parse(self) -> ConfigDocument:
        """Parse the whole source."""
        doc = ConfigDocument(filename=self.filename)
        self._parse_items(doc.blocks, doc.directives, closing=TokenType.EOF)
        return doc

    def _parse_items(
        self,
        blocks: list[Block],
        directives: list[Directive],
        closing: TokenType,
    ) -> None:
        while self.token.type != closing:
            if self.token.type == TokenType.INCLUDE:
                included = self._parse_include()
                blocks.extend(included.blocks)
                directives.extend(included.directives)
            elif self.token.type == TokenType.IDENTIFIER:
                item = self._parse_statement()
                if isinstance(item, Block):
                    blocks.append(item)
                else:
                    directives.append(item)
            elif self.token.type == TokenType.EOF:
                raise ParseError("Unexpected end of input, missing '}'", self.token)
            else:
                raise ParseError(
                    f"Expected block, directive or include; got {self.token.type.name}",
                    self.token,
                )

    def _parse_statement(self) -> Block | Directive:
        name_token = self._advance()
        name = str(name_token.value)

        values: list[Any] = []
        while self.token.type in VALUE_TOKENS:
            values.append(self._advance().value)

        if self.token.type == TokenType.SEMICOLON:
            self._advance()
            return Directive(name=name, values=values, line=name_token.line)

        if self.token.type != TokenType.LBRACE:
            raise ParseError(f"Expected '{{' or ';' after '{name}'", self.token)

        if len(values) > 1 or (values and not isinstance(values[0], str)):
            raise ParseError(f"Block '{name}' takes at most one string name", name_token)

        self._advance()
        block = Block(type=name, name=values[0] if values else None, line=name_token.line)
        self._parse_items(block.blocks, block.directives, closing=TokenType.RBRACE)
        self._expect(TokenType.RBRACE, f"Expected '}}' to close '{name}' block")
        return block

    def _parse_include(self) -> ConfigDocument:
        include_token = self._advance()
        path_token = self._expect(TokenType.STRING, "Expected file path after 'include'")
        self._expect(TokenType.SEMICOLON, "Expected ';' after include path")

        pattern = Path(str(path_token.value))
        if not pattern.is_absolute():
            pattern = self.base_path / pattern

        merged = ConfigDocument()
        for match in sorted(glob.glob(str(pattern))):
            path = Path(match)
            resolved = str(path.resolve())
            if resolved in self.included_files:
                raise ParseError(f"Circular include detected: {path}", include_token)

            parser = ConfigParser(
                source=path.read_text(),
                filename=str(path),
                base_path=path.parent,
                included_files=self.included_files | {resolved},
            )
            merged.merge(parser.parse())

        return merged


def parse_config(
    source: str,
    filename: str = "<string>",
    base_path: Path | None = None,
) -> ConfigDocument:
    """Parse configuration source text."""
    return ConfigParser(source, filename, base_path).parse()


def parse_config_file(path: str | Path) -> ConfigDocument:
    """Parse a configuration file, resolving includes relative to it."""
    path = Path(path)
    return parse_config(path.read_text(), str(path), path.parent)
