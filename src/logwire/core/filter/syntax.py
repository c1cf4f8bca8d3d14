"""Lexer, AST and parser for filter expressions.

The grammar is the CEL expression grammar::

    Expr           = ConditionalOr ["?" ConditionalOr ":" Expr]
    ConditionalOr  = [ConditionalOr "||"] ConditionalAnd
    ConditionalAnd = [ConditionalAnd "&&"] Relation
    Relation       = [Relation Relop] Addition        Relop = < <= >= > == != in
    Addition       = [Addition ("+" | "-")] Multiplication
    Multiplication = [Multiplication ("*" | "/" | "%")] Unary
    Unary          = Member | "!" {"!"} Member | "-" {"-"} Member
    Member         = Primary
                   | Member "." IDENT ["(" [ExprList] ")"]
                   | Member ".?" IDENT
                   | Member "[" Expr "]"
                   | Member "[?" Expr "]"
    Primary        = IDENT ["(" [ExprList] ")"] | "(" Expr ")"
                   | "[" [ExprList] "]" | "{" [MapInits] "}" | LITERAL

Macros (``has``, ``all``, ``exists``, ``exists_one``, ``map``, ``filter``,
``sortBy`` and ``cel.bind``) are expanded into dedicated nodes while parsing.
Calls on the ``optional``, ``strings``, ``math``, ``base64``, ``sets`` and
``lists`` namespaces become global calls named ``namespace.function``.
"""

import re
from dataclasses import dataclass
from typing import Any

from logwire.core.errors import FilterCompileError

# --- Tokens ---

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+|//[^\n]*)
  | (?P<string>[rRbB]{0,2}(?:'''[\s\S]*?'''|\"\"\"[\s\S]*?\"\"\"|'(?:\\.|[^'\\\n])*'|"(?:\\.|[^"\\\n])*"))
  | (?P<float>\d+\.\d+(?:[eE][+-]?\d+)?|\d+[eE][+-]?\d+)
  | (?P<int>0[xX][0-9a-fA-F]+[uU]?|\d+[uU]?)
  | (?P<ident>[_a-zA-Z][_a-zA-Z0-9]*)
  | (?P<op>==|!=|<=|>=|&&|\|\||\.\?|\[\?|[-+*/%<>!?:.,()\[\]{}])
    """,
    re.VERBOSE,
)

_SIMPLE_ESCAPES = {
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    "\\": "\\",
    "'": "'",
    '"': '"',
    "`": "`",
    "?": "?",
}

_ESCAPE_RE = re.compile(
    r"\\(?:(?P<simple>[abfnrtv\\'\"`?])|x(?P<hex>[0-9a-fA-F]{2})"
    r"|u(?P<u4>[0-9a-fA-F]{4})|U(?P<u8>[0-9a-fA-F]{8})|(?P<oct>[0-3][0-7]{2})|(?P<bad>.))",
    re.DOTALL,
)


@dataclass(frozen=True, slots=True)
class Token:
    kind: str
    text: str
    pos: int


def tokenize(source: str) -> list[Token]:
    """Split ``source`` into tokens, ending with an ``eof`` token."""
    tokens = []
    pos = 0
    while pos < len(source):
        m = _TOKEN_RE.match(source, pos)
        if m is None:
            raise FilterCompileError(
                f"unexpected character {source[pos]!r}", source, pos
            )
        kind = m.lastgroup or ""
        if kind != "ws":
            tokens.append(Token(kind, m.group(), pos))
        pos = m.end()
    tokens.append(Token("eof", "", pos))
    return tokens


def _unquote(token: Token, source: str) -> str | bytes:
    text = token.text
    prefix_len = len(text) - len(text.lstrip("rRbB"))
    prefix = text[:prefix_len].lower()
    body = text[prefix_len:]
    quote = 3 if body[:3] in ("'''", '"""') else 1
    body = body[quote:-quote]
    is_bytes = "b" in prefix

    if "r" not in prefix:

        def replace(m: re.Match[str]) -> str:
            if m.group("simple"):
                return _SIMPLE_ESCAPES[m.group("simple")]
            if m.group("bad") is not None:
                raise FilterCompileError(
                    f"invalid escape sequence \\{m.group('bad')}", source, token.pos
                )
            code = m.group("hex") or m.group("u4") or m.group("u8")
            if code is not None:
                return chr(int(code, 16))
            return chr(int(m.group("oct"), 8))

        body = _ESCAPE_RE.sub(replace, body)

    if is_bytes:
        # \x and octal escapes are raw byte values in bytes literals
        return body.encode("latin-1") if all(ord(c) < 256 for c in body) else body.encode()
    return body


# --- AST ---


@dataclass(frozen=True, slots=True)
class Node:
    pos: int


@dataclass(frozen=True, slots=True)
class Literal(Node):
    value: Any
    type_name: str


@dataclass(frozen=True, slots=True)
class Ident(Node):
    name: str


@dataclass(frozen=True, slots=True)
class Select(Node):
    operand: Node
    field: str
    optional: bool = False


@dataclass(frozen=True, slots=True)
class Index(Node):
    operand: Node
    index: Node
    optional: bool = False


@dataclass(frozen=True, slots=True)
class Call(Node):
    function: str
    args: tuple[Node, ...]
    target: Node | None = None


@dataclass(frozen=True, slots=True)
class ListExpr(Node):
    elements: tuple[Node, ...]


@dataclass(frozen=True, slots=True)
class MapExpr(Node):
    entries: tuple[tuple[Node, Node], ...]


@dataclass(frozen=True, slots=True)
class Unary(Node):
    op: str
    operand: Node


@dataclass(frozen=True, slots=True)
class Binary(Node):
    op: str
    left: Node
    right: Node


@dataclass(frozen=True, slots=True)
class Conditional(Node):
    condition: Node
    then: Node
    otherwise: Node


@dataclass(frozen=True, slots=True)
class Has(Node):
    select: Select


@dataclass(frozen=True, slots=True)
class Comprehension(Node):
    macro: str
    range: Node
    var: str
    body: Node


@dataclass(frozen=True, slots=True)
class Bind(Node):
    var: str
    init: Node
    body: Node


COMPREHENSION_MACROS = frozenset(
    {"all", "exists", "exists_one", "map", "filter", "sortBy"}
)

# Receivers that name a function namespace rather than a value
_NAMESPACES = frozenset({"optional", "strings", "math", "base64", "sets", "lists"})

_RELOPS = frozenset({"<", "<=", ">", ">=", "==", "!=", "in"})


class Parser:
    """Recursive-descent parser producing an AST."""

    def __init__(self, source: str) -> None:
        self.source = source
        self.tokens = tokenize(source)
        self.i = 0

    # token helpers

    @property
    def tok(self) -> Token:
        return self.tokens[self.i]

    def _error(self, message: str, token: Token | None = None) -> FilterCompileError:
        token = token or self.tok
        return FilterCompileError(message, self.source, token.pos)

    def _at(self, text: str) -> bool:
        t = self.tok
        return t.kind in ("op", "ident") and t.text == text

    def _accept(self, text: str) -> Token | None:
        if self._at(text):
            t = self.tok
            self.i += 1
            return t
        return None

    def _expect(self, text: str) -> Token:
        t = self._accept(text)
        if t is None:
            found = self.tok.text or "end of input"
            raise self._error(f"expected {text!r}, found {found!r}")
        return t

    # grammar

    def parse(self) -> Node:
        if self.tok.kind == "eof":
            raise self._error("empty expression")
        node = self.expr()
        if self.tok.kind != "eof":
            raise self._error(f"unexpected token {self.tok.text!r}")
        return node

    def expr(self) -> Node:
        node = self.conditional_or()
        if q := self._accept("?"):
            then = self.conditional_or()
            self._expect(":")
            otherwise = self.expr()
            return Conditional(q.pos, node, then, otherwise)
        return node

    def conditional_or(self) -> Node:
        node = self.conditional_and()
        while t := self._accept("||"):
            node = Binary(t.pos, "||", node, self.conditional_and())
        return node

    def conditional_and(self) -> Node:
        node = self.relation()
        while t := self._accept("&&"):
            node = Binary(t.pos, "&&", node, self.relation())
        return node

    def relation(self) -> Node:
        node = self.addition()
        while self.tok.text in _RELOPS and self.tok.kind in ("op", "ident"):
            t = self.tok
            self.i += 1
            node = Binary(t.pos, t.text, node, self.addition())
        return node

    def addition(self) -> Node:
        node = self.multiplication()
        while self.tok.kind == "op" and self.tok.text in ("+", "-"):
            t = self.tok
            self.i += 1
            node = Binary(t.pos, t.text, node, self.multiplication())
        return node

    def multiplication(self) -> Node:
        node = self.unary()
        while self.tok.kind == "op" and self.tok.text in ("*", "/", "%"):
            t = self.tok
            self.i += 1
            node = Binary(t.pos, t.text, node, self.unary())
        return node

    def unary(self) -> Node:
        if self.tok.kind == "op" and self.tok.text in ("!", "-"):
            t = self.tok
            self.i += 1
            operand = self.unary()
            # Fold negative numeric literals so -9223372036854775808 is valid
            if (
                t.text == "-"
                and isinstance(operand, Literal)
                and operand.type_name in ("int", "double")
                and operand.pos == t.pos + 1
            ):
                return Literal(t.pos, -operand.value, operand.type_name)
            return Unary(t.pos, t.text, operand)
        return self.member()

    def member(self) -> Node:
        node = self.primary()
        while True:
            if t := self._accept("."):
                name = self._ident()
                if self._at("("):
                    args = self._call_args()
                    node = self._method(t.pos, node, name, args)
                else:
                    node = Select(t.pos, node, name)
            elif t := self._accept(".?"):
                node = Select(t.pos, node, self._ident(), optional=True)
            elif t := self._accept("["):
                index = self.expr()
                self._expect("]")
                node = Index(t.pos, node, index)
            elif t := self._accept("[?"):
                index = self.expr()
                self._expect("]")
                node = Index(t.pos, node, index, optional=True)
            else:
                return node

    def primary(self) -> Node:
        t = self.tok
        if t.kind == "int":
            self.i += 1
            return self._int_literal(t)
        if t.kind == "float":
            self.i += 1
            return Literal(t.pos, float(t.text), "double")
        if t.kind == "string":
            self.i += 1
            value = _unquote(t, self.source)
            return Literal(t.pos, value, "bytes" if isinstance(value, bytes) else "string")
        if t.kind == "ident":
            self.i += 1
            if t.text == "true":
                return Literal(t.pos, True, "bool")
            if t.text == "false":
                return Literal(t.pos, False, "bool")
            if t.text == "null":
                return Literal(t.pos, None, "null_type")
            if t.text == "in":
                raise self._error("unexpected keyword 'in'", t)
            if self._at("("):
                return self._global_call(t, self._call_args())
            return Ident(t.pos, t.text)
        if self._accept("("):
            node = self.expr()
            self._expect(")")
            return node
        if self._accept("["):
            elements = self._expr_list("]")
            return ListExpr(t.pos, elements)
        if self._accept("{"):
            return MapExpr(t.pos, self._map_inits())
        if t.kind == "eof":
            raise self._error("unexpected end of input")
        raise self._error(f"unexpected token {t.text!r}")

    # pieces

    def _ident(self) -> str:
        t = self.tok
        if t.kind != "ident":
            raise self._error(f"expected identifier, found {t.text or 'end of input'!r}")
        self.i += 1
        return t.text

    def _int_literal(self, t: Token) -> Literal:
        text = t.text
        unsigned = text[-1] in "uU"
        if unsigned:
            text = text[:-1]
        value = int(text, 16) if text[:2] in ("0x", "0X") else int(text)
        if unsigned:
            if value > 2**64 - 1:
                raise self._error("uint literal out of range", t)
            return Literal(t.pos, value, "uint")
        # Upper bound is 2**63 so that a negated literal can reach int64 min
        if value > 2**63:
            raise self._error("int literal out of range", t)
        return Literal(t.pos, value, "int")

    def _expr_list(self, close: str) -> tuple[Node, ...]:
        items: list[Node] = []
        if self._accept(close):
            return ()
        while True:
            items.append(self.expr())
            if self._accept(close):
                return tuple(items)
            self._expect(",")
            # trailing comma
            if self._accept(close):
                return tuple(items)

    def _call_args(self) -> tuple[Node, ...]:
        self._expect("(")
        return self._expr_list(")")

    def _map_inits(self) -> tuple[tuple[Node, Node], ...]:
        entries: list[tuple[Node, Node]] = []
        if self._accept("}"):
            return ()
        while True:
            key = self.expr()
            self._expect(":")
            entries.append((key, self.expr()))
            if self._accept("}"):
                return tuple(entries)
            self._expect(",")
            if self._accept("}"):
                return tuple(entries)

    def _global_call(self, t: Token, args: tuple[Node, ...]) -> Node:
        if t.text == "has":
            if len(args) != 1 or not isinstance(args[0], Select) or args[0].optional:
                raise self._error("has() requires a field selection argument", t)
            return Has(t.pos, args[0])
        return Call(t.pos, t.text, args)

    def _method(self, pos: int, target: Node, name: str, args: tuple[Node, ...]) -> Node:
        if isinstance(target, Ident):
            if target.name == "cel" and name == "bind":
                if len(args) != 3 or not isinstance(args[0], Ident):
                    raise FilterCompileError(
                        "cel.bind() requires (name, init, expr)", self.source, pos
                    )
                return Bind(pos, args[0].name, args[1], args[2])
            if target.name in _NAMESPACES:
                return Call(pos, f"{target.name}.{name}", args)
        if name in COMPREHENSION_MACROS and len(args) == 2:
            if not isinstance(args[0], Ident):
                raise FilterCompileError(
                    f"{name}() requires an identifier as its first argument",
                    self.source,
                    pos,
                )
            return Comprehension(pos, name, target, args[0].name, args[1])
        return Call(pos, name, args, target)


def parse(source: str) -> Node:
    """Parse ``source`` into an AST.

    Raises:
        FilterCompileError: On any syntax error.
    """
    return Parser(source).parse()
