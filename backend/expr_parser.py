"""
Tokenizer and precedence-climbing parser for the expression grammar of both
dialects, plus the small text helpers the statement executors use to take a
line apart (top-level comma splitting, paren matching, assignment detection).
"""
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional, Tuple

from trace_types import Dialect, ExpressionError

Token = Tuple[str, str]

_NUMBER = r"(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?"

_TOKEN_SPECIFICATION = {
    Dialect.PYTHON: [
        ("NUMBER",   _NUMBER),
        ("STRING",   r'"(?:[^"\\]|\\.)*"|\'(?:[^\'\\]|\\.)*\''),
        ("NAME",     r"[A-Za-z_]\w*"),
        ("OP",       r"\*\*|//|==|!=|<=|>=|[-+*/%<>]"),
        ("LPAREN",   r"\("),
        ("RPAREN",   r"\)"),
        ("LBRACKET", r"\["),
        ("RBRACKET", r"\]"),
        ("COMMA",    r","),
        ("DOT",      r"\."),
        ("SKIP",     r"\s+"),
        ("MISMATCH", r"."),
    ],
    Dialect.C: [
        ("NUMBER",   _NUMBER + r"[fFlLuU]*"),
        ("STRING",   r'"(?:[^"\\]|\\.)*"'),
        ("CHAR",     r"'(?:[^'\\]|\\.)'"),
        ("NAME",     r"[A-Za-z_]\w*"),
        ("OP",       r"&&|\|\||==|!=|<=|>=|[-+*/%<>!]"),
        ("LPAREN",   r"\("),
        ("RPAREN",   r"\)"),
        ("LBRACKET", r"\["),
        ("RBRACKET", r"\]"),
        ("COMMA",    r","),
        ("SKIP",     r"\s+"),
        ("MISMATCH", r"."),
    ],
}

_TOKEN_REGEX = {
    dialect: re.compile("|".join(f"(?P<{name}>{pattern})" for name, pattern in table))
    for dialect, table in _TOKEN_SPECIFICATION.items()
}

# Binary operator precedence, higher binds tighter.
_PRECEDENCE = {
    Dialect.PYTHON: {
        "or": 1, "and": 2,
        "==": 4, "!=": 4, "<": 4, ">": 4, "<=": 4, ">=": 4, "in": 4, "not in": 4,
        "+": 5, "-": 5,
        "*": 6, "/": 6, "//": 6, "%": 6,
        "**": 8,
    },
    Dialect.C: {
        "||": 1, "&&": 2,
        "==": 3, "!=": 3,
        "<": 4, ">": 4, "<=": 4, ">=": 4,
        "+": 5, "-": 5,
        "*": 6, "/": 6, "%": 6,
    },
}
_NOT_PRECEDENCE = 3
_UNARY_PRECEDENCE = 7
_RIGHT_ASSOCIATIVE = {"**"}

_CONSTANTS = {
    Dialect.PYTHON: {"True": True, "False": False, "None": None},
    Dialect.C: {"true": 1, "false": 0, "NULL": 0},
}

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0", "\\": "\\", "'": "'", '"': '"'}


# --- AST ---

@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Variable:
    name: str


@dataclass(frozen=True)
class ListLiteral:
    items: tuple


@dataclass(frozen=True)
class Unary:
    op: str
    operand: Any


@dataclass(frozen=True)
class Binary:
    op: str
    left: Any
    right: Any


@dataclass(frozen=True)
class Index:
    target: Any
    index: Any


@dataclass(frozen=True)
class Call:
    name: str
    args: tuple


@dataclass(frozen=True)
class MethodCall:
    receiver: Any
    method: str
    args: tuple


def unescape(body: str) -> str:
    out = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            out.append(_ESCAPES.get(body[i + 1], body[i + 1]))
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def tokenize(text: str, dialect: Dialect) -> list:
    tokens = []
    for mo in _TOKEN_REGEX[dialect].finditer(text):
        kind = mo.lastgroup
        value = mo.group()
        if kind == "SKIP":
            continue
        if kind == "MISMATCH":
            raise ExpressionError(f"Unexpected character {value!r}")
        tokens.append((kind, value))
    return tokens


class ExpressionParser:
    def __init__(self, tokens, dialect: Dialect):
        self.tokens = tokens
        self.dialect = dialect
        self.precedence = _PRECEDENCE[dialect]
        self.pos = 0

    def current(self) -> Token:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else ("EOF", "")

    def peek(self, offset: int = 1) -> Token:
        index = self.pos + offset
        return self.tokens[index] if index < len(self.tokens) else ("EOF", "")

    def consume(self, expected_type=None) -> Token:
        token = self.current()
        if expected_type and token[0] != expected_type:
            raise ExpressionError(f"Expected {expected_type}, got {token[0]} ({token[1]})")
        self.pos += 1
        return token

    def match(self, *types) -> bool:
        return self.current()[0] in types

    def parse(self):
        node = self.expression()
        if not self.match("EOF"):
            raise ExpressionError(f"Unexpected token {self.current()[1]!r}")
        return node

    def expression(self, min_prec: int = 1):
        left = self._parse_prefix()
        while True:
            op = self._binary_operator()
            if op is None:
                break
            prec = self.precedence[op]
            if prec < min_prec:
                break
            self.pos += 2 if op == "not in" else 1
            right = self.expression(prec if op in _RIGHT_ASSOCIATIVE else prec + 1)
            left = Binary(op, left, right)
        return left

    def _binary_operator(self) -> Optional[str]:
        kind, value = self.current()
        if kind == "OP" and value in self.precedence:
            return value
        if kind == "NAME" and self.dialect is Dialect.PYTHON:
            if value in ("and", "or", "in"):
                return value
            if value == "not" and self.peek() == ("NAME", "in"):
                return "not in"
        return None

    def _parse_prefix(self):
        kind, value = self.current()
        if self.dialect is Dialect.PYTHON and (kind, value) == ("NAME", "not"):
            self.consume()
            return Unary("not", self.expression(_NOT_PRECEDENCE))
        if kind == "OP" and (value in ("-", "+") or (value == "!" and self.dialect is Dialect.C)):
            self.consume()
            return Unary(value, self.expression(_UNARY_PRECEDENCE))
        return self._parse_postfix()

    def _parse_postfix(self):
        node = self._parse_primary()
        while True:
            if self.match("LBRACKET"):
                self.consume("LBRACKET")
                index = self.expression()
                self.consume("RBRACKET")
                node = Index(node, index)
            elif self.match("DOT"):
                self.consume("DOT")
                method = self.consume("NAME")[1]
                node = MethodCall(node, method, self._arguments())
            else:
                return node

    def _arguments(self) -> tuple:
        self.consume("LPAREN")
        args = []
        if not self.match("RPAREN"):
            args.append(self.expression())
            while self.match("COMMA"):
                self.consume("COMMA")
                args.append(self.expression())
        self.consume("RPAREN")
        return tuple(args)

    def _parse_primary(self):
        kind, value = self.current()
        if kind == "NUMBER":
            self.consume()
            return Literal(_number(value.rstrip("fFlLuU")))
        if kind == "STRING":
            self.consume()
            return Literal(unescape(value[1:-1]))
        if kind == "CHAR":
            self.consume()
            return Literal(ord(unescape(value[1:-1])))
        if kind == "NAME":
            self.consume()
            if self.match("LPAREN"):
                return Call(value, self._arguments())
            constants = _CONSTANTS[self.dialect]
            if value in constants:
                return Literal(constants[value])
            return Variable(value)
        if kind == "LPAREN":
            self.consume()
            node = self.expression()
            self.consume("RPAREN")
            return node
        if kind == "LBRACKET" and self.dialect is Dialect.PYTHON:
            self.consume()
            items = []
            while not self.match("RBRACKET"):
                items.append(self.expression())
                if not self.match("COMMA"):
                    break
                self.consume("COMMA")
            self.consume("RBRACKET")
            return ListLiteral(tuple(items))
        raise ExpressionError(f"Unexpected token {value or 'end of expression'!r}")


def _number(text: str):
    if any(ch in text for ch in ".eE"):
        return float(text)
    return int(text)


@lru_cache(maxsize=1024)
def parse_expression(text: str, dialect: Dialect):
    """Parse one expression. Trees are immutable, so they are cached."""
    tokens = tokenize(text, dialect)
    if not tokens:
        raise ExpressionError("Empty expression")
    return ExpressionParser(tokens, dialect).parse()


# --- Line helpers ---

def _scan_top_level(text: str):
    """Yield (index, char) for characters outside literals and brackets."""
    depth = 0
    quote = None
    escaped = False
    for i, ch in enumerate(text):
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in "\"'":
            quote = ch
        elif ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        elif depth == 0:
            yield i, ch


def split_top_level(text: str, separator: str = ",") -> list:
    parts = []
    start = 0
    for i, ch in _scan_top_level(text):
        if ch == separator:
            parts.append(text[start:i].strip())
            start = i + 1
    tail = text[start:].strip()
    if tail or parts:
        parts.append(tail)
    return parts


def match_paren(text: str, open_index: int) -> int:
    """Index of the parenthesis closing the one at `open_index`."""
    depth = 0
    quote = None
    for i in range(open_index, len(text)):
        ch = text[i]
        if quote:
            if ch == quote and text[i - 1] != "\\":
                quote = None
            continue
        if ch in "\"'":
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
    raise ExpressionError("Unbalanced parentheses")


def split_assignment(text: str):
    """Split `target op= value` into (target, op, value), or None.

    `op` is "=" for plain assignment or the compound operator ("+=", "//=").
    """
    for i, ch in _scan_top_level(text):
        if ch != "=":
            continue
        after = text[i + 1:i + 2]
        before = text[i - 1:i] if i else ""
        if after == "=" or before in ("=", "!", "<", ">"):
            # comparison operator; later '=' characters are part of it or of the value
            if after == "=":
                return None
            continue
        op = "="
        if text[max(0, i - 2):i] in ("//", "**"):
            op = text[i - 2:i] + "="
        elif before in ("+", "-", "*", "/", "%"):
            op = before + "="
        target = text[:i - len(op) + 1].strip()
        value = text[i + 1:].strip()
        if not target or not value:
            return None
        return target, op, value
    return None
