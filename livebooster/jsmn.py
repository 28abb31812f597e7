"""Minimal tokenizing JSON parser.

The parser does not build values: it records, for each JSON element, its
kind, its position in the source text and its number of direct children.
It is lenient: any unquoted run of printable characters is a primitive.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Union

Text = Union[str, bytes, bytearray]

_WHITESPACE = " \t\r\n"
_PRIMITIVE_END = ":\t\r\n ,]}"
_SIMPLE_ESCAPES = '"/\\bfrnt'
_HEX_DIGITS = "0123456789abcdefABCDEF"


class JsmnType(enum.IntEnum):
    """Kind of a JSON token."""

    UNDEFINED = 0
    OBJECT = 1
    ARRAY = 2
    STRING = 3
    PRIMITIVE = 4


@dataclass
class Token:
    """A JSON element: its kind, its span in the text and its child count."""

    type: JsmnType = JsmnType.UNDEFINED
    start: int = -1
    end: int = -1
    size: int = 0

    def text(self, js: Text) -> Text:
        """Return the part of ``js`` covered by this token."""
        return js[self.start:self.end]

    @property
    def is_open(self) -> bool:
        return self.start != -1 and self.end == -1


class JsmnError(ValueError):
    """Base class of the parser errors."""

    code = 0


class JsmnNoMemoryError(JsmnError):
    """More tokens are needed than were allowed."""

    code = -1


class JsmnInvalidError(JsmnError):
    """The text holds an invalid character or structure."""

    code = -2


class JsmnPartialError(JsmnError):
    """The text is not a complete JSON document; more data is expected."""

    code = -3


def _as_text(js: Text) -> str:
    if isinstance(js, (bytes, bytearray)):
        return bytes(js).decode("latin-1")
    return js


class JsmnParser:
    """Incremental tokenizer; parsing may resume on a longer text after a
    JsmnPartialError."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        """Forget every token and restart at the beginning of the text."""
        self.pos = 0
        self.toksuper = -1
        self.tokens: list[Token] = []

    def parse(self, js: Text, num_tokens: Optional[int] = None) -> list[Token]:
        """Tokenize ``js`` using at most ``num_tokens`` tokens (no limit when
        None) and return the tokens."""
        self._run(_as_text(js), num_tokens, store=True)
        return list(self.tokens)

    def count(self, js: Text) -> int:
        """Return the number of tokens ``js`` needs, without storing any."""
        return self._run(_as_text(js), None, store=False)

    def _alloc(self, num_tokens: Optional[int]) -> Optional[Token]:
        if num_tokens is not None and len(self.tokens) >= num_tokens:
            return None
        token = Token()
        self.tokens.append(token)
        return token

    def _innermost_open(self) -> int:
        for index, token in reversed(list(enumerate(self.tokens))):
            if token.is_open:
                return index
        return -1

    def _add_child(self) -> None:
        if self.toksuper != -1:
            self.tokens[self.toksuper].size += 1

    def _run(self, js: str, num_tokens: Optional[int], store: bool) -> int:
        count = len(self.tokens)
        length = len(js)
        while self.pos < length and js[self.pos] != "\0":
            char = js[self.pos]
            if char in "{[":
                count += 1
                if store:
                    token = self._alloc(num_tokens)
                    if token is None:
                        raise JsmnNoMemoryError("not enough tokens")
                    self._add_child()
                    token.type = JsmnType.OBJECT if char == "{" else JsmnType.ARRAY
                    token.start = self.pos
                    self.toksuper = len(self.tokens) - 1
            elif char in "}]":
                if store:
                    self._close(JsmnType.OBJECT if char == "}" else JsmnType.ARRAY)
            elif char == '"':
                self._parse_string(js, num_tokens, store)
                count += 1
                if store:
                    self._add_child()
            elif char in _WHITESPACE:
                pass
            elif char == ":":
                self.toksuper = len(self.tokens) - 1
            elif char == ",":
                if (
                    store
                    and self.toksuper != -1
                    and self.tokens[self.toksuper].type
                    not in (JsmnType.ARRAY, JsmnType.OBJECT)
                ):
                    container = self._innermost_open()
                    if container != -1:
                        self.toksuper = container
            else:
                self._parse_primitive(js, num_tokens, store)
                count += 1
                if store:
                    self._add_child()
            self.pos += 1

        if store and self._innermost_open() != -1:
            raise JsmnPartialError("unterminated object or array")
        return count

    def _close(self, kind: JsmnType) -> None:
        index = self._innermost_open()
        if index == -1:
            raise JsmnInvalidError(f"unmatched closing bracket at {self.pos}")
        token = self.tokens[index]
        if token.type != kind:
            raise JsmnInvalidError(f"mismatched closing bracket at {self.pos}")
        token.end = self.pos + 1
        self.toksuper = self._innermost_open()

    def _parse_primitive(self, js: str, num_tokens: Optional[int], store: bool) -> None:
        start = self.pos
        length = len(js)
        while self.pos < length and js[self.pos] != "\0":
            char = js[self.pos]
            if char in _PRIMITIVE_END:
                break
            if ord(char) < 32 or ord(char) >= 127:
                self.pos = start
                raise JsmnInvalidError(f"invalid character in primitive at {start}")
            self.pos += 1

        if store:
            token = self._alloc(num_tokens)
            if token is None:
                self.pos = start
                raise JsmnNoMemoryError("not enough tokens")
            token.type = JsmnType.PRIMITIVE
            token.start = start
            token.end = self.pos
            token.size = 0
        self.pos -= 1

    def _parse_string(self, js: str, num_tokens: Optional[int], store: bool) -> None:
        start = self.pos
        length = len(js)
        self.pos += 1
        while self.pos < length and js[self.pos] != "\0":
            char = js[self.pos]
            if char == '"':
                if not store:
                    return
                token = self._alloc(num_tokens)
                if token is None:
                    self.pos = start
                    raise JsmnNoMemoryError("not enough tokens")
                token.type = JsmnType.STRING
                token.start = start + 1
                token.end = self.pos
                token.size = 0
                return
            if char == "\\" and self.pos + 1 < length:
                self.pos += 1
                escaped = js[self.pos]
                if escaped in _SIMPLE_ESCAPES:
                    pass
                elif escaped == "u":
                    self.pos += 1
                    digits = 0
                    while digits < 4 and self.pos < length and js[self.pos] != "\0":
                        if js[self.pos] not in _HEX_DIGITS:
                            self.pos = start
                            raise JsmnInvalidError(f"invalid unicode escape in string at {start}")
                        self.pos += 1
                        digits += 1
                    self.pos -= 1
                else:
                    self.pos = start
                    raise JsmnInvalidError(f"invalid escape in string at {start}")
            self.pos += 1
        self.pos = start
        raise JsmnPartialError(f"unterminated string at {start}")


def parse(js: Text, num_tokens: Optional[int] = None) -> list[Token]:
    """Tokenize a whole JSON text with a fresh parser."""
    return JsmnParser().parse(js, num_tokens)