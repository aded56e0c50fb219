"""Tokenizer and parser for the block-structured configuration format.

The grammar is line oriented and forgiving: a missing ``;`` or closing quote
is reported as a warning and parsing goes on, while structural mistakes such
as an unexpected ``}`` stop the parse with an error.
"""

from __future__ import annotations

import enum
import re
from typing import Iterator, Optional

from .config import Block, Config, Item, ItemType

__all__ = ["TokenType", "ConfigParseError", "Parser", "tokenize", "parse_string", "parse_file"]

_STATE_NAME = 0x01
_STATE_VALUE = 0x02
_STATE_SET = 0x10

_PUNCT = ",{}=;"
_LINE_END = re.compile(r"[\r\n]")
_QUOTE_END = re.compile(r'["\r\n]')
_WORD_END = re.compile(r"[;, \t\r\n]")


class TokenType(enum.IntEnum):
    """Kinds of tokens produced by :func:`tokenize`."""

    COMMENT = 0
    NEWLINE = 1
    STRING = 2
    PUNCT = 3


class ConfigParseError(ValueError):
    """Raised when a configuration cannot be read or is malformed."""

    def __init__(self, message: str, line: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.line = line


def _find(pattern: re.Pattern, text: str, pos: int) -> int:
    match = pattern.search(text, pos)
    return match.start() if match else len(text)


def tokenize(text: str) -> Iterator[tuple[TokenType, Optional[str]]]:
    """Split configuration text into ``(token_type, token)`` pairs.

    Newline tokens carry ``None``.  A quoted string keeps its quotes and also
    takes the character that ended it, even when that is a line break.
    """
    pos = 0
    size = len(text)
    while pos < size:
        char = text[pos]
        if char == "#":
            end = _find(_LINE_END, text, pos)
            yield TokenType.COMMENT, text[pos:end]
            pos = end
        elif char == "\n":
            yield TokenType.NEWLINE, None
            pos += 1
        elif char in " \t\r":
            pos += 1
        elif char in _PUNCT:
            yield TokenType.PUNCT, char
            pos += 1
        elif char == '"':
            end = _find(_QUOTE_END, text, pos + 1)
            yield TokenType.STRING, text[pos:end + 1]
            pos = end + 1
        else:
            end = _find(_WORD_END, text, pos + 1)
            yield TokenType.STRING, text[pos:end]
            pos = end


class Parser:
    """State machine that builds a configuration tree from tokens."""

    def __init__(self, config: Config, block: Optional[Block] = None):
        self.config = config
        self.block: Block = block if block is not None else config.root
        self.current_item: Optional[Item] = None
        self.key: Optional[str] = None
        self.name: list[str] = []
        self.state = 0
        self.last_token_type = TokenType.COMMENT
        self.line = 1
        self.error = False
        self.warnings: list[str] = []
        self.message: Optional[str] = None

    def _fail(self, text: str) -> None:
        self.error = True
        self.message = f"Line {self.line}: {text}"

    def _not_expected(self, token: Optional[str]) -> None:
        self._fail(f"not expecting '{token}'")

    def _warn_missing(self, token: str) -> None:
        self.message = f"Line {self.line}: missing '{token}', ignoring"
        self.warnings.append(self.message)

    def _reset_state(self) -> None:
        self.key = None
        self.name = []
        self.state = 0

    def _add_item(self, item_type: ItemType) -> Item:
        if item_type is ItemType.VALUE and self.key is not None:
            wanted = self.key.lower()
            for item in self.block.items:
                if item.type is ItemType.VALUE and item.key is not None and item.key.lower() == wanted:
                    self.key = None
                    self.current_item = item
                    return item
        if item_type is ItemType.COMMENT:
            item = Item(ItemType.COMMENT)
        else:
            value = [] if item_type is ItemType.VALUE else None
            item = Item(item_type, self.key, value)
            self.key = None
            self.current_item = item
        self.block.items.append(item)
        return item

    def _open_block(self) -> None:
        item = self._add_item(ItemType.BLOCK)
        block = Block(name=self.name or [""], parent=self.block)
        item.value = block
        self.name = []
        self.block = block

    def _string(self, token: str) -> None:
        if self.state & (_STATE_VALUE | _STATE_SET) == (_STATE_VALUE | _STATE_SET):
            self._warn_missing(";")
            self._reset_state()
        value = token
        if token.startswith('"'):
            value = token[1:]
            if value.endswith('"'):
                value = value[:-1]
            else:
                self._warn_missing('"')
        if self.state == 0:
            self.key = value
            self.state = _STATE_NAME
        elif self.state == _STATE_NAME:
            self.state |= _STATE_SET
            self.name.append(value)
        elif self.state == _STATE_VALUE:
            self.state |= _STATE_SET
            self.current_item.value.append(value)
        else:
            self._not_expected(value)

    def _punct(self, token: str) -> None:
        char = token[:1]
        if char == "{":
            if not self.state & _STATE_NAME:
                self._not_expected("{")
                return
            self._open_block()
            self._reset_state()
        elif char == "}":
            if self.state != 0:
                if not self.state & _STATE_VALUE or not self.state & _STATE_SET:
                    self._not_expected("}")
                    return
                self._warn_missing(";")
                self._reset_state()
            if self.block.parent is None:
                self._fail("missing matching '{'")
                return
            self.block = self.block.parent
        elif char == ",":
            if not self.state & (_STATE_NAME | _STATE_VALUE):
                self._not_expected(",")
            self.state &= ~_STATE_SET
        elif char == "=":
            if not self.state & _STATE_NAME:
                self._not_expected("=")
                return
            self._add_item(ItemType.VALUE)
            self.state = _STATE_VALUE
        elif char == ";":
            self._reset_state()
        else:
            self.message = f"Line {self.line}: bad token ignoring"

    def parse_token(self, token_type: TokenType, token: Optional[str]) -> None:
        """Feed one token into the parser; ignored after a fatal error."""
        if self.error:
            return
        token_type = TokenType(token_type)
        if token_type is TokenType.NEWLINE:
            self.line += 1
            if self.last_token_type is TokenType.NEWLINE:
                # an empty line is kept as a comment without text
                self._add_item(ItemType.COMMENT).value = token
        elif token_type is TokenType.COMMENT:
            self._add_item(ItemType.COMMENT).value = token
        elif token_type is TokenType.STRING:
            self._string(token or "")
        else:
            self._punct(token or "")
        self.last_token_type = token_type


def _run(config: Config, text: str) -> Parser:
    parser = Parser(config)
    for token_type, token in tokenize(text):
        parser.parse_token(token_type, token)
        if parser.error:
            config.errmsg = parser.message
            raise ConfigParseError(parser.message, parser.line)
    return parser


def parse_string(config: Config, text: str) -> Parser:
    """Parse ``text`` into ``config.root`` and return the finished parser."""
    return _run(config, text)


def parse_file(config: Config) -> Parser:
    """Parse the file named by ``config.filename`` into ``config.root``."""
    filename = config.filename
    try:
        if filename is None:
            raise FileNotFoundError("no file name given")
        with open(filename, encoding="utf-8", errors="surrogateescape") as handle:
            text = handle.read()
    except OSError as exc:
        reason = exc.strerror or str(exc)
        message = f'Unable to open "{filename}": {reason}'
        config.errmsg = message
        raise ConfigParseError(message) from exc
    return _run(config, text)