"""
Evaluates parsed expressions against a variable scope.

Failures (unknown names, type mismatches, bad indices, division by zero,
unparseable text) never abort a trace: `Evaluator.evaluate` logs them and
returns the UNKNOWN sentinel. Only a StepBudgetExceeded raised by a nested
user call escapes.
"""
import logging
import math
import operator

from expr_parser import Index, Variable, parse_expression
from trace_builtins import C_BUILTINS, PYTHON_BUILTINS, PYTHON_METHODS
from trace_types import UNKNOWN, Dialect, ExpressionError

logger = logging.getLogger(__name__)

_RECOVERABLE = (
    ExpressionError, TypeError, ValueError, ZeroDivisionError,
    IndexError, KeyError, OverflowError, AttributeError,
)


def _c_div(a, b):
    if isinstance(a, int) and isinstance(b, int):
        if b == 0:
            raise ZeroDivisionError("integer division by zero")
        # C truncates toward zero
        quotient = abs(a) // abs(b)
        return quotient if (a < 0) == (b < 0) else -quotient
    return a / b


def _c_mod(a, b):
    if isinstance(a, int) and isinstance(b, int):
        return a - b * _c_div(a, b)
    return math.fmod(a, b)


def _as_int(fn):
    return lambda a, b: int(fn(a, b))


_PYTHON_OPERATORS = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
    "//": operator.floordiv,
    "%": operator.mod,
    "**": operator.pow,
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    ">": operator.gt,
    "<=": operator.le,
    ">=": operator.ge,
    "in": lambda a, b: a in b,
    "not in": lambda a, b: a not in b,
}

_C_OPERATORS = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": _c_div,
    "%": _c_mod,
    "==": _as_int(operator.eq),
    "!=": _as_int(operator.ne),
    "<": _as_int(operator.lt),
    ">": _as_int(operator.gt),
    "<=": _as_int(operator.le),
    ">=": _as_int(operator.ge),
}


class Evaluator:
    def __init__(self, dialect: Dialect, call_user):
        """`call_user(name, args, ctx)` runs a user-defined function."""
        self.dialect = dialect
        self.call_user = call_user
        if dialect is Dialect.C:
            self.operators = _C_OPERATORS
            self.builtins = C_BUILTINS
        else:
            self.operators = _PYTHON_OPERATORS
            self.builtins = PYTHON_BUILTINS

    def parse(self, text: str):
        """Parse `text`, or return None when it is not an expression."""
        try:
            return parse_expression(text.strip(), self.dialect)
        except ExpressionError:
            return None

    def evaluate(self, expression, scope: dict, ctx):
        """Evaluate source text or an already parsed node."""
        if isinstance(expression, str):
            expression = expression.strip()
            if not expression:
                return None
        try:
            node = parse_expression(expression, self.dialect) if isinstance(expression, str) else expression
            return _ExpressionVisitor(self, scope, ctx).visit(node)
        except _RECOVERABLE as e:
            logger.debug("Could not evaluate %r: %s", expression, e)
            return UNKNOWN

    def store(self, target, value, scope: dict, ctx) -> bool:
        """Write `value` to a variable or element target; False if it cannot be written."""
        if isinstance(target, Variable):
            scope[target.name] = value
            return True
        if not isinstance(target, Index):
            return False
        container = self.evaluate(target.target, scope, ctx)
        index = self.evaluate(target.index, scope, ctx)
        if not isinstance(index, int) or (index < 0 and self.dialect is Dialect.C):
            logger.debug("Cannot store at index %r", index)
            return False
        if isinstance(container, list):
            if not -len(container) <= index < len(container):
                logger.debug("Index %d out of range for a list of %d", index, len(container))
                return False
            container[index] = value
            return True
        # char arrays initialised from a string literal
        if isinstance(container, str) and isinstance(target.target, Variable) and self.dialect is Dialect.C:
            if index >= len(container) or not isinstance(value, int) or not 0 <= value < 0x110000:
                return False
            scope[target.target.name] = container[:index] + chr(value) + container[index + 1:]
            return True
        logger.debug("Cannot store into %s", type(container).__name__)
        return False

    def combine(self, op: str, left, right):
        """Apply a binary operator to two values, as a compound assignment does."""
        try:
            return self.operators[op](left, right)
        except _RECOVERABLE as e:
            logger.debug("Could not apply %s to %r and %r: %s", op, left, right, e)
            return UNKNOWN


class _ExpressionVisitor:
    """Walks one expression tree. The call budget is per top-level expression."""

    def __init__(self, evaluator: Evaluator, scope: dict, ctx):
        self.evaluator = evaluator
        self.scope = scope
        self.ctx = ctx
        self.calls_left = ctx.limits.max_calls_per_expression

    def visit(self, node):
        return getattr(self, "visit_" + type(node).__name__)(node)

    def visit_Literal(self, node):
        return node.value

    def visit_Variable(self, node):
        if node.name not in self.scope:
            raise ExpressionError(f"name {node.name!r} is not defined")
        return self.scope[node.name]

    def visit_ListLiteral(self, node):
        return [self.visit(item) for item in node.items]

    def visit_Unary(self, node):
        value = self.visit(node.operand)
        if node.op == "-":
            return -value
        if node.op == "+":
            return +value
        if node.op == "not":
            return not value
        return int(not value)

    def visit_Binary(self, node):
        op = node.op
        if op in ("and", "or"):
            left = self.visit(node.left)
            if op == "and":
                return self.visit(node.right) if left else left
            return left if left else self.visit(node.right)
        if op in ("&&", "||"):
            left = bool(self.visit(node.left))
            if op == "&&":
                return int(left and bool(self.visit(node.right)))
            return int(left or bool(self.visit(node.right)))
        return self.evaluator.operators[op](self.visit(node.left), self.visit(node.right))

    def visit_Index(self, node):
        target = self.visit(node.target)
        index = self.visit(node.index)
        if not isinstance(target, (list, str)) or not isinstance(index, int):
            raise ExpressionError(f"cannot index {type(target).__name__} with {index!r}")
        if self.evaluator.dialect is Dialect.C:
            if index < 0:
                raise ExpressionError("negative array index")
            if isinstance(target, str):
                return ord(target[index])
        return target[index]

    def visit_Call(self, node):
        self.calls_left -= 1
        if self.calls_left < 0:
            raise ExpressionError("too many calls in one expression")
        args = [self.visit(arg) for arg in node.args]
        builtin = self.evaluator.builtins.get(node.name)
        if builtin is not None:
            return builtin(args, self.ctx)
        return self.evaluator.call_user(node.name, args, self.ctx)

    def visit_MethodCall(self, node):
        receiver = self.visit(node.receiver)
        args = [self.visit(arg) for arg in node.args]
        methods = PYTHON_METHODS.get(type(receiver), {})
        if node.method not in methods:
            raise ExpressionError(f"{type(receiver).__name__} has no method {node.method!r}")
        return methods[node.method](receiver, args)
