"""
Template parser for the mapping expression language.

A template is literal text with zero or more ``{{ expression }}`` segments.
Expressions are:

- dot paths into the context: ``user.address.city``, ``items.0.id``
- literals: ``"text"``, ``'text'``, ``42``, ``-1.5``, ``true``, ``false``, ``null``
- function calls resolved through the function registry: ``upper(user.name)``
- pipes that feed the left value as first argument: ``user.name | default("n/a") | upper``

Parsing is pure and cached per template string.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from conduit.transform.errors import ParseError

OPEN = "{{"
CLOSE = "}}"

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
      | (?P<number>-?\d+(?:\.\d+)?(?![A-Za-z_]))
      | (?P<name>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+)*)
      | (?P<punct>[(),|])
    )
    """,
    re.VERBOSE,
)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"', "'": "'"}

_KEYWORDS: dict[str, Any] = {"true": True, "false": False, "null": None}


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Path:
    path: str


@dataclass(frozen=True)
class Call:
    name: str
    args: tuple["Node", ...]


@dataclass(frozen=True)
class Pipe:
    value: "Node"
    name: str
    args: tuple["Node", ...]


Node = Literal | Path | Call | Pipe


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    position: int


@dataclass(frozen=True)
class Template:
    """Parsed template: literal strings interleaved with expression nodes."""

    parts: tuple[str | Node, ...]

    @property
    def is_single_expression(self) -> bool:
        """True when the whole template is exactly one expression and nothing else."""
        return len(self.parts) == 1 and not isinstance(self.parts[0], str)

    @property
    def expressions(self) -> list[Node]:
        return [part for part in self.parts if not isinstance(part, str)]


def _unescape(raw: str) -> str:
    body = raw[1:-1]
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), body)


def tokenize(expression: str) -> list[Token]:
    tokens: list[Token] = []
    position = 0
    length = len(expression)
    while position < length:
        if expression[position:].strip() == "":
            break
        match = _TOKEN_RE.match(expression, position)
        kind = match.lastgroup if match is not None else None
        if match is None or kind is None or match.end() == position:
            raise ParseError(
                f"Unexpected character {expression[position:].lstrip()[:1]!r}",
                template=expression,
                position=position,
            )
        tokens.append(Token(kind=kind, text=match.group(kind), position=match.start(kind)))
        position = match.end()
    return tokens


class _ExpressionParser:
    def __init__(self, expression: str):
        self.expression = expression
        self.tokens = tokenize(expression)
        self.index = 0

    def _peek(self) -> Token | None:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _next(self) -> Token:
        token = self._peek()
        if token is None:
            raise ParseError("Unexpected end of expression", template=self.expression)
        self.index += 1
        return token

    def _expect(self, text: str) -> None:
        token = self._next()
        if token.text != text:
            raise ParseError(
                f"Expected {text!r}, got {token.text!r}",
                template=self.expression,
                position=token.position,
            )

    def parse(self) -> Node:
        if not self.tokens:
            raise ParseError("Empty expression", template=self.expression)
        node = self._pipeline()
        token = self._peek()
        if token is not None:
            raise ParseError(
                f"Unexpected token {token.text!r}",
                template=self.expression,
                position=token.position,
            )
        return node

    def _pipeline(self) -> Node:
        node = self._primary()
        while (token := self._peek()) is not None and token.text == "|":
            self._next()
            name_token = self._next()
            if name_token.kind != "name" or "." in name_token.text:
                raise ParseError(
                    f"Expected function name after '|', got {name_token.text!r}",
                    template=self.expression,
                    position=name_token.position,
                )
            args: tuple[Node, ...] = ()
            following = self._peek()
            if following is not None and following.text == "(":
                args = self._arguments()
            node = Pipe(value=node, name=name_token.text, args=args)
        return node

    def _arguments(self) -> tuple[Node, ...]:
        self._expect("(")
        args: list[Node] = []
        token = self._peek()
        if token is not None and token.text == ")":
            self._next()
            return ()
        while True:
            args.append(self._pipeline())
            token = self._next()
            if token.text == ")":
                return tuple(args)
            if token.text != ",":
                raise ParseError(
                    f"Expected ',' or ')', got {token.text!r}",
                    template=self.expression,
                    position=token.position,
                )

    def _primary(self) -> Node:
        token = self._next()
        match token.kind:
            case "string":
                return Literal(_unescape(token.text))
            case "number":
                value = float(token.text) if "." in token.text else int(token.text)
                return Literal(value)
            case "name":
                following = self._peek()
                if following is not None and following.text == "(":
                    return Call(name=token.text, args=self._arguments())
                if token.text in _KEYWORDS:
                    return Literal(_KEYWORDS[token.text])
                return Path(token.text)
            case _:
                raise ParseError(
                    f"Unexpected token {token.text!r}",
                    template=self.expression,
                    position=token.position,
                )


def parse_expression(expression: str) -> Node:
    return _ExpressionParser(expression).parse()


def _find_close(template: str, start: int) -> int:
    """Index of the '}}' closing the segment whose body starts at `start`, skipping quoted text."""
    quote: str | None = None
    position = start
    while position < len(template):
        char = template[position]
        if quote:
            if char == "\\":
                position += 2
                continue
            if char == quote:
                quote = None
        elif char in ("'", '"'):
            quote = char
        elif template.startswith(CLOSE, position):
            return position
        elif template.startswith(OPEN, position):
            raise ParseError("Nested '{{' inside expression", template=template, position=position)
        position += 1
    raise ParseError("Unclosed '{{'", template=template, position=start - len(OPEN))


@lru_cache(maxsize=1024)
def parse_template(template: str) -> Template:
    """
    Split a template into literal text and parsed expressions.

    Raises:
        ParseError: unbalanced braces or invalid expression syntax
    """
    parts: list[str | Node] = []
    position = 0
    while position < len(template):
        open_at = template.find(OPEN, position)
        close_at = template.find(CLOSE, position)
        if close_at != -1 and (open_at == -1 or close_at < open_at):
            raise ParseError("Unmatched '}}'", template=template, position=close_at)
        if open_at == -1:
            parts.append(template[position:])
            break
        if open_at > position:
            parts.append(template[position:open_at])
        body_start = open_at + len(OPEN)
        body_end = _find_close(template, body_start)
        parts.append(parse_expression(template[body_start:body_end]))
        position = body_end + len(CLOSE)
    return Template(parts=tuple(parts))
