"""Micro-parser for tool calls emitted as plain text.

Grammar::

    text  := (noise | call)*
    call  := "call:" NAME "{" pair ("," pair)* "}"
    pair  := NAME ":" value
    value := QUOTED | raw text up to the next `, NAME:` boundary or the closing "}"
    NAME  := [A-Za-z0-9_]+

QUOTED is either ``"..."`` or ``<escape>...<escape>`` and is never coerced.
Raw values are coerced number > boolean (``true``/``false``) > string.
When no call is found the whole text is tried as a JSON object
``{"name": ..., "arguments": {...}}``.
"""
from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

_TOKEN_RE = re.compile(
    r"""
      (?P<QUOTED><escape>.*?<escape>|"(?:[^"\\]|\\.)*")
    | (?P<LBRACE>\{)
    | (?P<RBRACE>\})
    | (?P<COMMA>,)
    | (?P<COLON>:)
    | (?P<NAME>[A-Za-z0-9_]+)
    | (?P<WS>\s+)
    | (?P<OTHER>.)
    """,
    re.VERBOSE | re.DOTALL,
)


@dataclass
class ToolCall:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "arguments": dict(self.arguments)}


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    pos: int


class ParseError(ValueError):
    def __init__(self, message: str, pos: int):
        super().__init__(f"{message} at {pos}")
        self.pos = pos


def tokenize(text: str) -> List[Token]:
    return [Token(m.lastgroup, m.group(), m.start()) for m in _TOKEN_RE.finditer(text)]


def coerce_value(raw: str) -> Any:
    value = raw.strip()
    if value == "":
        return value
    try:
        return int(value)
    except ValueError:
        pass
    try:
        number = float(value)
        if math.isfinite(number):
            return number
    except ValueError:
        pass
    if value == "true":
        return True
    if value == "false":
        return False
    return value


def _unquote(token: Token) -> str:
    if token.text.startswith("<escape>"):
        return token.text[len("<escape>"):-len("<escape>")]
    try:
        return json.loads(token.text)
    except ValueError:
        return token.text[1:-1]


class _CallParser:
    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.i = 0

    def _peek(self, offset: int = 0, skip_ws: bool = True) -> Optional[Token]:
        j = self.i
        seen = 0
        while j < len(self.tokens):
            tok = self.tokens[j]
            if skip_ws and tok.kind == "WS":
                j += 1
                continue
            if seen == offset:
                return tok
            seen += 1
            j += 1
        return None

    def _next(self) -> Token:
        while self.i < len(self.tokens) and self.tokens[self.i].kind == "WS":
            self.i += 1
        if self.i >= len(self.tokens):
            raise ParseError("unexpected end of input", self.tokens[-1].pos if self.tokens else 0)
        tok = self.tokens[self.i]
        self.i += 1
        return tok

    def _expect(self, kind: str) -> Token:
        tok = self._next()
        if tok.kind != kind:
            raise ParseError(f"expected {kind}, got {tok.text!r}", tok.pos)
        return tok

    def _at_pair_boundary(self) -> bool:
        # `, NAME :` starts the next pair
        return (
            (self._peek(0) or Token("", "", 0)).kind == "COMMA"
            and (self._peek(1) or Token("", "", 0)).kind == "NAME"
            and (self._peek(2) or Token("", "", 0)).kind == "COLON"
        )

    def calls(self) -> Iterator[ToolCall]:
        while self.i < len(self.tokens):
            tok = self.tokens[self.i]
            if tok.kind == "NAME" and tok.text == "call" and self._is_call_start():
                start = self.i
                try:
                    yield self._call()
                except ParseError:
                    self.i = start + 1
            else:
                self.i += 1

    def _is_call_start(self) -> bool:
        nxt = self.tokens[self.i + 1] if self.i + 1 < len(self.tokens) else None
        return nxt is not None and nxt.kind == "COLON"

    def _call(self) -> ToolCall:
        self._expect("NAME")  # "call"
        self._expect("COLON")
        name = self._expect("NAME").text
        self._expect("LBRACE")
        args: Dict[str, Any] = {}
        if (self._peek() or Token("", "", 0)).kind == "RBRACE":
            self._next()
            return ToolCall(name, args)
        while True:
            key = self._expect("NAME").text
            self._expect("COLON")
            args[key] = self._value()
            tok = self._next()
            if tok.kind == "RBRACE":
                return ToolCall(name, args)
            if tok.kind != "COMMA":
                raise ParseError(f"expected ',' or '}}', got {tok.text!r}", tok.pos)

    def _value(self) -> Any:
        first = self._peek()
        if first is not None and first.kind == "QUOTED":
            self._next()
            after = self._peek()
            if after is not None and (after.kind == "RBRACE" or self._at_pair_boundary()):
                return _unquote(first)
            self.i -= 1
        parts: List[str] = []
        depth = 0
        while self.i < len(self.tokens):
            tok = self.tokens[self.i]
            if depth == 0 and (tok.kind == "RBRACE" or self._at_pair_boundary()):
                break
            if tok.kind == "COMMA" and depth == 0:
                # trailing comma before "}"
                nxt = self._peek(1)
                if nxt is not None and nxt.kind == "RBRACE":
                    self.i += 1
                    break
            if tok.kind == "LBRACE":
                depth += 1
            elif tok.kind == "RBRACE":
                depth -= 1
            parts.append(tok.text)
            self.i += 1
        else:
            raise ParseError("unterminated call", self.tokens[-1].pos)
        return coerce_value("".join(parts))


def parse_json_call(text: str) -> Optional[ToolCall]:
    body = text.strip()
    if body.startswith("```"):
        body = "\n".join(ln for ln in body.splitlines() if not ln.strip().startswith("```")).strip()
    try:
        data = json.loads(body)
    except ValueError:
        return None
    if not isinstance(data, dict) or not data.get("name") or not isinstance(data.get("arguments"), dict):
        return None
    if not data["arguments"]:
        return None
    return ToolCall(str(data["name"]), dict(data["arguments"]))


def parse_tool_calls(text: str) -> List[ToolCall]:
    """Every well-formed call with at least one argument; never raises."""
    if not text:
        return []
    calls = [c for c in _CallParser(tokenize(text)).calls() if c.arguments]
    if calls:
        return calls
    json_call = parse_json_call(text)
    return [json_call] if json_call else []
