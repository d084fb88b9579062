"""Position-preserving parsing and editing of JSON with comments.

``parse_tree`` builds an immutable tree of ``Node`` objects that remember
their absolute offset and length in the source text.  Edits are expressed
as ``Edit(offset, length, content)`` against that text and applied in one
batch by ``apply_edits``, so everything outside an edited span (comments,
whitespace, key order, number formatting) comes through byte-for-byte.

Accepted input is JSON plus ``//`` line comments, ``/* */`` block comments
and trailing commas in objects and arrays.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Sequence, Union

JsonPath = Sequence[Union[str, int]]

_NUMBER_RE = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?")
_HIGH_SURROGATE_RE = re.compile(r"\\u[dD][89abAB][0-9a-fA-F]{2}")
_LOW_SURROGATE_RE = re.compile(r"\\u[dD][c-fC-F][0-9a-fA-F]{2}")
_WHITESPACE = frozenset(" \t\r\n")


class PayloadParseError(Exception):
    """Raised when text is not well-formed JSON (with comments).

    Attributes:
        offset: Character offset where parsing failed, if known.
    """

    def __init__(self, message: str, offset: int | None = None) -> None:
        self.offset = offset
        if offset is not None:
            message = f"{message} (at offset {offset})"
        super().__init__(message)


class NodeType(str, Enum):
    OBJECT = "object"
    ARRAY = "array"
    PROPERTY = "property"
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    NULL = "null"


@dataclass(frozen=True)
class Node:
    """A parsed JSON value and its span in the source text.

    Attributes:
        type: The node kind.
        offset: Absolute offset of the first character (the opening quote
            for strings).
        length: Length of the node's source text.
        value: Decoded value for leaves; the key for properties.
        children: Property nodes for objects, elements for arrays,
            ``(key, value)`` for properties.
    """

    type: NodeType
    offset: int
    length: int
    value: Any = None
    children: tuple[Node, ...] = ()

    @property
    def end(self) -> int:
        return self.offset + self.length


_LITERALS: tuple[tuple[str, NodeType, Any], ...] = (
    ("true", NodeType.BOOLEAN, True),
    ("false", NodeType.BOOLEAN, False),
    ("null", NodeType.NULL, None),
)


class _Parser:
    def __init__(self, text: str) -> None:
        self._text = text
        self._pos = 0

    def parse(self) -> Node | None:
        self._skip_trivia()
        if self._pos >= len(self._text):
            return None
        node = self._value()
        self._skip_trivia()
        if self._pos < len(self._text):
            raise PayloadParseError("Unexpected content after end of document", self._pos)
        return node

    def _skip_trivia(self) -> None:
        text = self._text
        n = len(text)
        while self._pos < n:
            ch = text[self._pos]
            if ch in _WHITESPACE:
                self._pos += 1
            elif text.startswith("//", self._pos):
                newline = text.find("\n", self._pos)
                self._pos = n if newline == -1 else newline + 1
            elif text.startswith("/*", self._pos):
                close = text.find("*/", self._pos + 2)
                if close == -1:
                    raise PayloadParseError("Unterminated block comment", self._pos)
                self._pos = close + 2
            else:
                break

    def _value(self) -> Node:
        text = self._text
        if self._pos >= len(text):
            raise PayloadParseError("Unexpected end of document", self._pos)
        ch = text[self._pos]
        if ch == "{":
            return self._object()
        if ch == "[":
            return self._array()
        if ch == '"':
            return self._string()
        for literal, node_type, value in _LITERALS:
            if text.startswith(literal, self._pos):
                start = self._pos
                self._pos += len(literal)
                return Node(node_type, start, len(literal), value)
        match = _NUMBER_RE.match(text, self._pos)
        if match:
            self._pos = match.end()
            return Node(NodeType.NUMBER, match.start(), len(match.group(0)), json.loads(match.group(0)))
        raise PayloadParseError(f"Unexpected character {ch!r}", self._pos)

    def _string(self) -> Node:
        text = self._text
        start = self._pos
        i = start + 1
        n = len(text)
        while i < n:
            ch = text[i]
            if ch == "\\":
                i += 2
                continue
            if ch == '"':
                break
            i += 1
        else:
            raise PayloadParseError("Unterminated string", start)

        raw = text[start:i + 1]
        try:
            value = json.loads(raw)
        except json.JSONDecodeError as e:
            raise PayloadParseError(f"Invalid string literal: {e.msg}", start) from e
        self._pos = i + 1
        return Node(NodeType.STRING, start, len(raw), value)

    def _object(self) -> Node:
        text = self._text
        start = self._pos
        self._pos += 1
        children: list[Node] = []
        self._skip_trivia()
        while True:
            if self._pos >= len(text):
                raise PayloadParseError("Unterminated object", start)
            if text[self._pos] == "}":
                self._pos += 1
                break
            if text[self._pos] != '"':
                raise PayloadParseError("Expected property name", self._pos)
            key = self._string()
            self._skip_trivia()
            if not text.startswith(":", self._pos):
                raise PayloadParseError("Expected ':' after property name", self._pos)
            self._pos += 1
            self._skip_trivia()
            value = self._value()
            children.append(
                Node(NodeType.PROPERTY, key.offset, value.end - key.offset, key.value, (key, value))
            )
            self._skip_trivia()
            if text.startswith(",", self._pos):
                self._pos += 1
                self._skip_trivia()
                continue
            if text.startswith("}", self._pos):
                self._pos += 1
                break
            raise PayloadParseError("Expected ',' or '}'", self._pos)
        return Node(NodeType.OBJECT, start, self._pos - start, None, tuple(children))

    def _array(self) -> Node:
        text = self._text
        start = self._pos
        self._pos += 1
        children: list[Node] = []
        self._skip_trivia()
        while True:
            if self._pos >= len(text):
                raise PayloadParseError("Unterminated array", start)
            if text[self._pos] == "]":
                self._pos += 1
                break
            children.append(self._value())
            self._skip_trivia()
            if text.startswith(",", self._pos):
                self._pos += 1
                self._skip_trivia()
                continue
            if text.startswith("]", self._pos):
                self._pos += 1
                break
            raise PayloadParseError("Expected ',' or ']'", self._pos)
        return Node(NodeType.ARRAY, start, self._pos - start, None, tuple(children))


def parse_tree(text: str) -> Node | None:
    """Parse JSON-with-comments text into a positioned node tree.

    Returns:
        The root node, or None when the text holds only whitespace and
        comments.

    Raises:
        PayloadParseError: If the text is malformed.
    """
    return _Parser(text).parse()


def find_node_at_location(root: Node | None, path: JsonPath) -> Node | None:
    """Walk ``path`` (keys and array indexes) from ``root``.

    When an object repeats a key, the last occurrence wins, matching how
    the document decodes with ``json.loads``.

    Returns:
        The node at the path, or None if any segment does not resolve.
    """
    node = root
    if node is None:
        return None
    for segment in path:
        if isinstance(segment, int):
            if node.type != NodeType.ARRAY or not 0 <= segment < len(node.children):
                return None
            node = node.children[segment]
        else:
            if node.type != NodeType.OBJECT:
                return None
            found: Node | None = None
            for prop in node.children:
                if prop.value == segment:
                    found = prop.children[1]
            if found is None:
                return None
            node = found
    return node


def string_offsets(text: str, node: Node) -> list[int]:
    """Map each decoded character of a string node to its source offset.

    Escape sequences occupy several source characters but decode to one,
    so decoded indexes and document offsets drift apart whenever a string
    contains escapes.  The returned list has ``len(node.value) + 1``
    entries; the last one is the offset of the closing quote.

    Raises:
        ValueError: If ``node`` is not a string node.
    """
    if node.type != NodeType.STRING:
        raise ValueError(f"Expected a string node, got {node.type.value}")

    offsets: list[int] = []
    i = node.offset + 1
    end = node.end - 1
    while i < end:
        offsets.append(i)
        if text[i] != "\\":
            i += 1
        elif text[i + 1] != "u":
            i += 2
        elif _HIGH_SURROGATE_RE.match(text, i) and _LOW_SURROGATE_RE.match(text, i + 6):
            # A surrogate pair decodes to a single code point
            i += 12
        else:
            i += 6
    offsets.append(end)
    return offsets


@dataclass(frozen=True)
class Edit:
    """Replace ``length`` characters at ``offset`` with ``content``."""

    offset: int
    length: int
    content: str

    @property
    def end(self) -> int:
        return self.offset + self.length


def string_value_edit(node: Node, value: str) -> Edit:
    """Edit that rewrites a string node's literal to encode ``value``."""
    if node.type != NodeType.STRING:
        raise ValueError(f"Expected a string node, got {node.type.value}")
    return Edit(node.offset, node.length, json.dumps(value, ensure_ascii=False))


def apply_edits(text: str, edits: Iterable[Edit]) -> str:
    """Apply a batch of non-overlapping edits computed against ``text``.

    Raises:
        ValueError: If two edits overlap or an edit falls outside the text.
    """
    ordered = sorted(edits, key=lambda e: e.offset)
    if not ordered:
        return text

    chunks: list[str] = []
    prev_end = 0
    for edit in ordered:
        if edit.offset < prev_end:
            raise ValueError(f"Overlapping edits at offset {edit.offset}")
        if edit.offset < 0 or edit.end > len(text):
            raise ValueError(f"Edit [{edit.offset}, {edit.end}) is outside the document")
        chunks.append(text[prev_end:edit.offset])
        chunks.append(edit.content)
        prev_end = edit.end
    chunks.append(text[prev_end:])
    return "".join(chunks)
