import logging
import math
import re
from dataclasses import dataclass
from typing import Optional

from config import TraceLimits
from evaluator import Evaluator
from expr_parser import Call, Index, Variable, match_paren, split_assignment, split_top_level
from function_table import C_HEADER, build_c_functions
from source_lines import brace_layout, code_chars
from trace_builtins import MAX_SEQUENCE_LENGTH, c_describe, c_display, format_printf
from trace_context import TraceContext
from trace_types import UNKNOWN, Dialect, ExecutionStep, ExpressionError, ReturnSignal

logger = logging.getLogger(__name__)

_IF = re.compile(r"^(?:else\s+)?if\s*\(")
_ELSE_IF = re.compile(r"^else\s+if\s*\(")
_ELSE = re.compile(r"^else\b")
_WHILE = re.compile(r"^while\s*\(")
_FOR = re.compile(r"^for\s*\(")
_RETURN = re.compile(r"^return\b\s*(.*)$")
_DECLARATION = re.compile(
    r"^((?:(?:const|static|unsigned|signed|long|short)\s+)*(?:int|long|short|char|float|double|bool))\s+(?!\()(.+)$",
    re.DOTALL,
)
_DECLARATOR = re.compile(r"^\**\s*(\w+)\s*(?:\[\s*([^\]]*?)\s*\])?\s*(?:=\s*(.+))?$", re.DOTALL)
_PRE_INCREMENT = re.compile(r"^(\+\+|--)\s*(.+)$")
_POST_INCREMENT = re.compile(r"^(.+?)\s*(\+\+|--)$")


@dataclass(frozen=True)
class _Body:
    """Where a compound statement's body lives.

    Either a line range [start, end) at `depth`, or `inline` statements
    written on the header line itself. `end` is where execution resumes.
    """
    header: int
    start: int
    end: int
    depth: int
    inline: tuple = ()


def _coerce(value, is_float: bool):
    """Convert a number to the declared numeric type."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return value
    if is_float:
        return float(value)
    return int(value) if math.isfinite(value) else value


def _keep_kind(current, value):
    """Assigned numbers keep the numeric type of the variable they replace."""
    if isinstance(current, bool) or isinstance(value, bool):
        return value
    if isinstance(current, int) and isinstance(value, float):
        return _coerce(value, False)
    if isinstance(current, float) and isinstance(value, int):
        return float(value)
    return value


def _split_inline_else(text: str):
    """Split `a; else b;` or `{ a; } else { b; }` written on one line into (then, else-or-None)."""
    depth = 0
    for i, ch in code_chars(text):
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        if depth == 0 and ch in ";}":
            tail = text[i + 1:].lstrip()
            if _ELSE.match(tail):
                return text[:i + 1].strip(), tail[4:].strip()
    return text, None


class CTracer:
    def __init__(self, limits: Optional[TraceLimits] = None):
        self.limits = limits or TraceLimits()
        self.evaluator = Evaluator(Dialect.C, self._call_user)

    def run(self, code: str) -> list[ExecutionStep]:
        """
        Interprets and traces the provided C code.
        Top-level declarations run first, then the body of main().
        """
        program = brace_layout(code)
        functions = build_c_functions(program)
        ctx = TraceContext(program, functions, self.limits)
        logger.debug("Tracing %d lines, functions: %s", len(program), ", ".join(functions) or "-")

        # Globals share one scope with main(), which runs without a stack frame.
        scope = {}
        signal = self.execute_block(ctx, 0, len(program), 0, scope)
        main = functions.get("main")
        if signal is None and main is not None:
            self.execute_block(ctx, main.body_start, main.body_end, main.body_depth, scope)
        return ctx.steps

    # --- blocks ---

    def execute_block(self, ctx, start: int, end: int, depth: int, scope: dict) -> Optional[ReturnSignal]:
        i = start
        while i < end:
            line = ctx.program[i]
            if line.is_blank or line.depth > depth:
                i += 1
                continue
            if line.depth < depth:
                break
            i, signal = self.execute_line(ctx, i, depth, scope)
            if signal is not None:
                return signal
        return None

    def execute_line(self, ctx, idx: int, depth: int, scope: dict):
        line = ctx.program[idx]
        text = line.text

        header = C_HEADER.match(text)
        if header:
            return self._define(ctx, idx, header, scope), None
        if _IF.match(text):
            return self._conditional(ctx, idx, depth, scope)
        if _ELSE.match(text):
            # an else with no if in front of it: its body is skipped
            return self._body(ctx, idx, text[4:].strip()).end, None
        if _WHILE.match(text):
            return self._while(ctx, idx, scope)
        if _FOR.match(text):
            return self._for(ctx, idx, scope)
        return idx + 1, self._statements(ctx, line.number, text, scope)

    def _header(self, text: str):
        """Split `kw (inside) rest` into (inside, rest)."""
        open_at = text.find("(")
        if open_at < 0:
            return None
        try:
            close_at = match_paren(text, open_at)
        except ExpressionError:
            return None
        return text[open_at + 1:close_at].strip(), text[close_at + 1:].strip()

    def _body(self, ctx, idx: int, rest: str) -> _Body:
        program = ctx.program
        line = program[idx]
        if rest in ("", "{"):
            nxt = program.next_code_line(idx + 1)
            if rest == "{" or (nxt < len(program) and program[nxt].depth > line.depth):
                depth = line.depth + 1
                return _Body(idx, idx + 1, program.block_end(idx + 1, depth), depth)
            # single statement on the following line, possibly compound itself
            return _Body(idx, nxt, self._statement_end(ctx, nxt), line.depth)
        inner = rest
        if inner.startswith("{"):
            inner = inner[1:]
            if inner.endswith("}"):
                inner = inner[:-1]
        statements = tuple(s for s in split_top_level(inner, ";") if s)
        return _Body(idx, idx + 1, idx + 1, line.depth, statements)

    def _statement_end(self, ctx, idx: int) -> int:
        """Index just past the statement starting at `idx`, nested bodies included."""
        program = ctx.program
        if idx >= len(program):
            return idx
        text = program[idx].text
        if _IF.match(text):
            return self._if_end(ctx, idx, text)
        if _WHILE.match(text) or _FOR.match(text):
            header = self._header(text)
            if header is not None:
                return self._body(ctx, idx, header[1]).end
        return idx + 1

    def _if_end(self, ctx, idx: int, text: str) -> int:
        """Index just past an if statement and its whole else chain."""
        header = self._header(text)
        if header is None:
            return idx + 1
        rest, tail = _split_inline_else(header[1])
        end = self._body(ctx, idx, rest).end
        if tail is None:
            return self._skip_else(ctx, end, ctx.program[idx].depth)
        if _IF.match(tail):
            return self._if_end(ctx, idx, tail)
        return self._body(ctx, idx, tail).end

    def _run_body(self, ctx, body: _Body, scope: dict) -> Optional[ReturnSignal]:
        if body.inline:
            number = ctx.program[body.header].number
            for statement in body.inline:
                signal = self._statements(ctx, number, statement, scope)
                if signal is not None:
                    return signal
            return None
        return self.execute_block(ctx, body.start, body.end, body.depth, scope)

    # --- compound statements ---

    def _define(self, ctx, idx: int, header, scope: dict) -> int:
        name, _, terminator = header.groups()
        if terminator == ";":
            # prototype
            return idx + 1
        line = ctx.program[idx]
        if name != "main":
            ctx.record(line.number, "define", f"Define function {name}", scope)
        return ctx.program.block_end(idx + 1, line.depth + 1)

    def _conditional(self, ctx, idx: int, depth: int, scope: dict, text: Optional[str] = None):
        """Run an if chain. `text` replaces the line text for an else-if written after `else` on the same line."""
        program = ctx.program
        line = program[idx]
        text = line.text if text is None else text
        header = self._header(text)
        if header is None:
            return idx + 1, self._statements(ctx, line.number, text, scope)
        guard, rest = header
        rest, tail = _split_inline_else(rest)
        value = self.evaluator.evaluate(guard, scope, ctx)
        body = self._body(ctx, idx, rest)

        if value:
            ctx.record(line.number, "condition_true", f"{guard} → True", scope)
            signal = self._run_body(ctx, body, scope)
            if signal is not None:
                return body.end, signal
            if tail is not None:
                return self._if_end(ctx, idx, text), None
            return self._skip_else(ctx, body.end, depth), None

        ctx.record(line.number, "condition_false", f"{guard} → False", scope)
        if tail is not None:
            if _IF.match(tail):
                return self._conditional(ctx, idx, depth, scope, tail)
            else_body = self._body(ctx, idx, tail)
            return else_body.end, self._run_body(ctx, else_body, scope)

        nxt = program.next_code_line(body.end)
        if nxt < len(program) and program[nxt].depth == depth and _ELSE.match(program[nxt].text):
            if _ELSE_IF.match(program[nxt].text):
                return self._conditional(ctx, nxt, depth, scope)
            else_body = self._body(ctx, nxt, program[nxt].text[4:].strip())
            return else_body.end, self._run_body(ctx, else_body, scope)
        return body.end, None

    def _skip_else(self, ctx, idx: int, depth: int) -> int:
        """Skip the else-if/else branches that follow a branch that ran."""
        program = ctx.program
        i = program.next_code_line(idx)
        if i < len(program) and program[i].depth == depth and _ELSE.match(program[i].text):
            tail = program[i].text[4:].strip()
            if _IF.match(tail):
                return self._if_end(ctx, i, tail)
            return program.next_code_line(self._body(ctx, i, tail).end)
        return i

    def _while(self, ctx, idx: int, scope: dict):
        line = ctx.program[idx]
        header = self._header(line.text)
        if header is None:
            return idx + 1, self._statements(ctx, line.number, line.text, scope)
        guard, rest = header
        body = self._body(ctx, idx, rest)

        ctx.record(line.number, "loop_start", f"While loop: {guard}", scope)
        iteration = 0
        cost = 1
        while ctx.continue_loop(line.number, iteration, cost):
            if not self.evaluator.evaluate(guard, scope, ctx):
                ctx.record(line.number, "condition_false", f"{guard} → False, loop ended", scope)
                break
            iteration += 1
            before = ctx.step_count
            ctx.record(line.number, "loop_check", f"{guard} → True (iteration {iteration})", scope)
            signal = self._run_body(ctx, body, scope)
            if signal is not None:
                return body.end, signal
            cost = ctx.step_count - before
        return body.end, None

    def _for(self, ctx, idx: int, scope: dict):
        line = ctx.program[idx]
        header = self._header(line.text)
        clauses = split_top_level(header[0], ";") if header else []
        if len(clauses) != 3:
            return idx + 1, self._statements(ctx, line.number, line.text, scope)
        init, test, step = clauses
        body = self._body(ctx, idx, header[1])

        if init:
            self._statements(ctx, line.number, init, scope)
        ctx.record(line.number, "loop_start", f"For loop: {header[0]}", scope)
        guard = test or "1"
        iteration = 0
        cost = 1
        while ctx.continue_loop(line.number, iteration, cost):
            if not self.evaluator.evaluate(guard, scope, ctx):
                ctx.record(line.number, "condition_false", f"{guard} → False, loop ended", scope)
                break
            iteration += 1
            before = ctx.step_count
            ctx.record(line.number, "loop_check", f"{guard} → True (iteration {iteration})", scope)
            signal = self._run_body(ctx, body, scope)
            if signal is not None:
                return body.end, signal
            for part in split_top_level(step):
                self._statement(ctx, line.number, part, scope)
            cost = ctx.step_count - before
        return body.end, None

    # --- simple statements ---

    def _statements(self, ctx, number: int, text: str, scope: dict) -> Optional[ReturnSignal]:
        """Run the `;`-separated statements of one line."""
        text = text.strip().lstrip("{").rstrip("}")
        for statement in split_top_level(text, ";"):
            if not statement:
                continue
            signal = self._statement(ctx, number, statement, scope)
            if signal is not None:
                return signal
        return None

    def _statement(self, ctx, number: int, text: str, scope: dict) -> Optional[ReturnSignal]:
        m = _RETURN.match(text)
        if m:
            value = self.evaluator.evaluate(m.group(1), scope, ctx) if m.group(1) else None
            ctx.record(number, "function_return", f"Return {c_describe(value)}", scope)
            return ReturnSignal(value)

        node = self.evaluator.parse(text)
        if isinstance(node, Call) and node.name in ("printf", "puts"):
            args = [self.evaluator.evaluate(arg, scope, ctx) for arg in node.args]
            if node.name == "printf":
                out = format_printf(args[0], args[1:]) if args else ""
            else:
                out = c_display(args[0]) if args else ""
            ctx.write_output(out)
            ctx.record(number, "print", f"Output: {out}", scope)
            return None

        m = _DECLARATION.match(text)
        if m and self._declare(ctx, number, m.group(1), m.group(2), scope):
            return None
        m = _PRE_INCREMENT.match(text)
        if m and self._increment(ctx, number, m.group(2), m.group(1), scope, prefix=True):
            return None
        m = _POST_INCREMENT.match(text)
        if m and self._increment(ctx, number, m.group(1), m.group(2), scope, prefix=False):
            return None
        parts = split_assignment(text)
        if parts and self._assign(ctx, number, *parts, scope):
            return None

        if node is None:
            logger.debug("Line %d is not a statement this tracer runs: %r", number + 1, text)
        self.evaluator.evaluate(node if node is not None else text, scope, ctx)
        ctx.record(number, "expression", f"Evaluated: {text}", scope)
        return None

    def _declare(self, ctx, number: int, type_text: str, declarators: str, scope: dict) -> bool:
        matches = [_DECLARATOR.match(d) for d in split_top_level(declarators)]
        if not matches or not all(matches):
            return False
        is_float = "float" in type_text or "double" in type_text

        described = []
        for m in matches:
            name, size_text, init = m.groups()
            if size_text is not None:
                value = self._array_value(ctx, size_text, init, is_float, scope)
            elif init is not None:
                value = _coerce(self.evaluator.evaluate(init, scope, ctx), is_float)
            else:
                value = 0.0 if is_float else 0
            scope[name] = value
            described.append(f"{name} = {c_describe(value)}")
        ctx.record(number, "assignment", ", ".join(described), scope)
        return True

    def _array_value(self, ctx, size_text: str, init: Optional[str], is_float: bool, scope: dict):
        size = self.evaluator.evaluate(size_text, scope, ctx) if size_text else None
        zero = 0.0 if is_float else 0
        if init is not None:
            init = init.strip()
            if not (init.startswith("{") and init.endswith("}")):
                # char s[] = "text"
                return self.evaluator.evaluate(init, scope, ctx)
            items = [
                _coerce(self.evaluator.evaluate(item, scope, ctx), is_float)
                for item in split_top_level(init[1:-1]) if item
            ]
            if isinstance(size, int) and len(items) < size <= MAX_SEQUENCE_LENGTH:
                items += [zero] * (size - len(items))
            return items
        if isinstance(size, int) and 0 <= size <= MAX_SEQUENCE_LENGTH:
            return [zero] * size
        return UNKNOWN

    def _increment(self, ctx, number: int, target_text: str, op: str, scope: dict, prefix: bool) -> bool:
        target = self.evaluator.parse(target_text)
        if not isinstance(target, (Variable, Index)):
            return False
        current = self.evaluator.evaluate(target, scope, ctx)
        result = self.evaluator.combine("+" if op == "++" else "-", current, 1)
        self.evaluator.store(target, result, scope, ctx)
        shown = f"{op}{target_text}" if prefix else f"{target_text}{op}"
        ctx.record(number, "assignment", f"{shown} → {c_describe(result)}", scope)
        return True

    def _assign_chain(self, ctx, number: int, chain: list, value_text: str, scope: dict) -> bool:
        """`a = b = value`: assigned right to left, each target keeping its numeric kind."""
        targets = [self.evaluator.parse(t) for t in chain]
        if not all(isinstance(t, (Variable, Index)) for t in targets):
            return False
        value = self.evaluator.evaluate(value_text, scope, ctx)
        for target in reversed(targets):
            if isinstance(target, Variable):
                current = scope.get(target.name)
            else:
                current = self.evaluator.evaluate(target, scope, ctx)
            value = _keep_kind(current, value)
            self.evaluator.store(target, value, scope, ctx)
        ctx.record(number, "assignment", f"{' = '.join(chain)} = {c_describe(value)}", scope)
        return True

    def _assign(self, ctx, number: int, target_text: str, op: str, value_text: str, scope: dict) -> bool:
        if op in ("//=", "**="):
            logger.debug("Operator %s is not a C operator, line %d", op, number + 1)
            return False
        if op == "=":
            chain = [target_text]
            nested = split_assignment(value_text)
            while nested and nested[1] == "=":
                chain.append(nested[0])
                value_text = nested[2]
                nested = split_assignment(value_text)
            if len(chain) > 1:
                return self._assign_chain(ctx, number, chain, value_text, scope)

        target = self.evaluator.parse(target_text)
        if not isinstance(target, (Variable, Index)):
            return False
        value = self.evaluator.evaluate(value_text, scope, ctx)
        if isinstance(target, Variable):
            current = scope.get(target.name)
        else:
            current = self.evaluator.evaluate(target, scope, ctx)

        if op == "=":
            result = _keep_kind(current, value)
            explanation = f"{target_text} = {c_describe(result)}"
        else:
            result = _keep_kind(current, self.evaluator.combine(op[:-1], current, value))
            explanation = f"{target_text} {op} {c_describe(value)} → {c_describe(result)}"
        self.evaluator.store(target, result, scope, ctx)
        ctx.record(number, "assignment", explanation, scope)
        return True

    # --- calls ---

    def _call_user(self, name: str, args: list, ctx):
        func = ctx.functions.get(name)
        if func is None:
            raise ExpressionError(f"function {name!r} is not defined")
        explanation = f"Call {name}({', '.join(c_describe(a) for a in args)})"
        return ctx.invoke(
            func,
            args,
            lambda local: self.execute_block(ctx, func.body_start, func.body_end, func.body_depth, local),
            explanation,
        )
