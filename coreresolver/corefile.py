"""Lexer and parser for the Corefile configuration syntax."""

from __future__ import annotations

import copy
import enum
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence


class TokenKind(enum.Enum):
    TEXT = "text"
    OPEN_BRACE = "{"
    CLOSE_BRACE = "}"
    NEWLINE = "newline"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str = ""


@dataclass
class PluginConfig:
    """One plugin directive: its name, arguments and nested block."""

    name: str
    args: list[str] = field(default_factory=list)
    block: list["PluginConfig"] = field(default_factory=list)


@dataclass
class RawZone:
    name: str
    plugins: list[PluginConfig] = field(default_factory=list)


_TOKEN_RE = re.compile(
    r"""
    (?P<newline>\n)
  | (?P<space>[^\S\n]+)
  | (?P<comment>\#[^\n]*)
  | (?P<open>\{)
  | (?P<close>\})
  | "(?P<quoted>[^"]*)"?
  | (?P<word>[^\s\#{}"]+)
    """,
    re.VERBOSE,
)


def lex(text: str) -> list[Token]:
    """Split Corefile text into tokens; comments and blanks are dropped."""
    tokens: list[Token] = []
    for match in _TOKEN_RE.finditer(text):
        kind = match.lastgroup
        if kind == "newline":
            tokens.append(Token(TokenKind.NEWLINE))
        elif kind == "open":
            tokens.append(Token(TokenKind.OPEN_BRACE))
        elif kind == "close":
            tokens.append(Token(TokenKind.CLOSE_BRACE))
        elif kind == "quoted":
            tokens.append(Token(TokenKind.TEXT, match.group("quoted")))
        elif kind == "word":
            tokens.append(Token(TokenKind.TEXT, match.group("word")))
        elif match.group("quoted") is not None:
            tokens.append(Token(TokenKind.TEXT, match.group("quoted")))
    return tokens


class _Parser:
    def __init__(self, tokens: Sequence[Token]) -> None:
        self._tokens = tokens
        self._pos = 0

    def _peek(self) -> Optional[Token]:
        if self._pos < len(self._tokens):
            return self._tokens[self._pos]
        return None

    def _advance(self) -> None:
        self._pos += 1

    def zones(self) -> list[RawZone]:
        zones: list[RawZone] = []
        names: list[str] = []
        while (token := self._peek()) is not None:
            self._advance()
            if token.kind is TokenKind.TEXT:
                names.append(token.text)
            elif token.kind is TokenKind.OPEN_BRACE:
                plugins = self._block()
                zones.extend(RawZone(name, copy.deepcopy(plugins)) for name in names)
                names.clear()
            elif token.kind is TokenKind.NEWLINE:
                names.clear()
        return zones

    def _block(self) -> list[PluginConfig]:
        plugins: list[PluginConfig] = []
        while (token := self._peek()) is not None:
            if token.kind is TokenKind.CLOSE_BRACE:
                self._advance()
                return plugins
            self._advance()
            if token.kind is TokenKind.TEXT:
                plugins.append(self._directive(token.text))
        return plugins

    def _directive(self, name: str) -> PluginConfig:
        args: list[str] = []
        block: list[PluginConfig] = []
        while (token := self._peek()) is not None:
            if token.kind is TokenKind.TEXT:
                args.append(token.text)
                self._advance()
            elif token.kind is TokenKind.OPEN_BRACE:
                self._advance()
                block = self._block()
                break
            else:
                break
        return PluginConfig(name, args, block)


def parse_tokens(tokens: Iterable[Token]) -> list[RawZone]:
    """Group tokens into server blocks, one RawZone per zone name."""
    return _Parser(list(tokens)).zones()


def parse_corefile(text: str) -> list[RawZone]:
    """Parse Corefile text into its zones and plugin directives."""
    return parse_tokens(lex(text))