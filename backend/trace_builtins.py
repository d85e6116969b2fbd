"""
Built-in functions and methods available to traced programs, and the value
formatting each dialect uses for output and step narration.

Every built-in takes `(args, ctx)`; only the output built-ins touch `ctx`.
"""
import math
import re

from trace_types import ExpressionError

# range() larger than this is refused instead of being materialized
MAX_SEQUENCE_LENGTH = 100_000

_PRINTF_SPEC = re.compile(r"%([-+ 0#]*\d*(?:\.\d+)?)(?:hh|h|ll|l|L|z)?([diuxXfFeEgGcs%])")


# --- display ---

def python_display(value) -> str:
    """How `print` shows a value: strings raw, everything else like str()."""
    if isinstance(value, str):
        return value
    return str(value)


def python_describe(value) -> str:
    return repr(value)


def c_display(value) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "{" + ", ".join(c_describe(v) for v in value) + "}"
    if isinstance(value, float) and value.is_integer():
        return f"{value:.1f}"
    return repr(value)


def c_describe(value) -> str:
    if isinstance(value, str):
        return '"' + value + '"'
    return c_display(value)


def format_printf(fmt, args) -> str:
    """Apply C printf conversions to `fmt`; the trailing newline is dropped."""
    values = iter(args)

    def substitute(m):
        flags, conversion = m.groups()
        if conversion == "%":
            return "%"
        value = next(values, 0)
        try:
            if conversion in "diu":
                return ("%" + flags + "d") % int(value)
            if conversion in "xX":
                return ("%" + flags + conversion) % int(value)
            if conversion in "fFeEgG":
                return ("%" + flags + conversion) % float(value)
            if conversion == "c":
                return chr(value) if isinstance(value, int) else str(value)[:1]
            return ("%" + flags + "s") % c_display(value)
        except (TypeError, ValueError, OverflowError):
            return c_display(value)

    return _PRINTF_SPEC.sub(substitute, str(fmt)).rstrip("\n")


# --- dialect A ---

def _range(args, ctx):
    values = range(*args)
    if len(values) > MAX_SEQUENCE_LENGTH:
        raise ExpressionError(f"range() of {len(values)} items is too large")
    return list(values)


def _print(args, ctx):
    ctx.write_output(" ".join(python_display(a) for a in args))
    return None


def _single(fn):
    def call(args, ctx):
        if len(args) != 1:
            raise ExpressionError(f"expected one argument, got {len(args)}")
        return fn(args[0])
    return call


PYTHON_BUILTINS = {
    "len": _single(len),
    "range": _range,
    "abs": _single(abs),
    "min": lambda args, ctx: min(*args),
    "max": lambda args, ctx: max(*args),
    "str": _single(python_display),
    "int": _single(int),
    "float": _single(float),
    "bool": _single(bool),
    "round": lambda args, ctx: round(*args),
    "sorted": _single(sorted),
    "reversed": _single(lambda seq: list(reversed(seq))),
    "sum": _single(sum),
    "list": _single(list),
    "type": _single(lambda value: type(value).__name__),
    "print": _print,
}


PYTHON_METHODS = {
    list: {
        "append": lambda target, args: target.append(*args),
        "pop": lambda target, args: target.pop(*args),
        "insert": lambda target, args: target.insert(*args),
        "remove": lambda target, args: target.remove(*args),
        "extend": lambda target, args: target.extend(*args),
        "index": lambda target, args: target.index(*args),
        "count": lambda target, args: target.count(*args),
        "reverse": lambda target, args: target.reverse(),
        "sort": lambda target, args: target.sort(),
    },
    str: {
        "upper": lambda target, args: target.upper(),
        "lower": lambda target, args: target.lower(),
        "strip": lambda target, args: target.strip(*args),
        "count": lambda target, args: target.count(*args),
        "index": lambda target, args: target.index(*args),
    },
}


# --- dialect B ---

def _printf(args, ctx):
    if not args:
        raise ExpressionError("printf needs a format string")
    text = format_printf(args[0], args[1:])
    ctx.write_output(text)
    return len(text)


def _puts(args, ctx):
    text = c_display(args[0]) if args else ""
    ctx.write_output(text)
    return len(text)


def _strlen(args, ctx):
    value = args[0]
    if isinstance(value, list):
        # char array filled element by element: count up to the terminator
        return next((i for i, ch in enumerate(value) if ch == 0), len(value))
    return len(value)


C_BUILTINS = {
    "abs": _single(lambda value: abs(int(value))),
    "fabs": _single(lambda value: abs(float(value))),
    "sqrt": _single(math.sqrt),
    "pow": lambda args, ctx: math.pow(*args),
    "strlen": _strlen,
    "printf": _printf,
    "puts": _puts,
}
