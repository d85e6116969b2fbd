"""
Tracing interpreter for dialect A, the indentation-delimited scripting
dialect. Lines are dispatched on their shape; nested blocks are found with
`SourceProgram.block_end` and executed recursively.
"""
import logging
import re
from typing import Optional

from config import TraceLimits
from evaluator import Evaluator
from expr_parser import Index, Literal, MethodCall, Variable, match_paren, split_assignment, split_top_level
from function_table import DEF_HEADER, build_python_functions
from source_lines import indent_layout
from trace_builtins import python_describe, python_display
from trace_context import TraceContext
from trace_types import UNKNOWN, Dialect, ExecutionStep, ExpressionError, ReturnSignal

logger = logging.getLogger(__name__)

_IF = re.compile(r"^(?:if|elif)\b\s*(.+?)\s*:$")
_ELIF = re.compile(r"^elif\b")
_ELSE = re.compile(r"^else\s*:$")
_WHILE = re.compile(r"^while\b\s*(.+?)\s*:$")
_FOR = re.compile(r"^for\s+(\w+)\s+in\s+(.+?)\s*:$")
_RETURN = re.compile(r"^return\b\s*(.*)$")
_PRINT = re.compile(r"^print\s*\(")
_KEYWORD = re.compile(r"^(\w+)\s*=(?!=)\s*(.+)$", re.DOTALL)


def _closes_at_end(text: str, open_index: int) -> bool:
    """True when the parenthesis at `open_index` is closed by the last character."""
    try:
        return match_paren(text, open_index) == len(text) - 1
    except ExpressionError:
        return False


class ScriptTracer:
    def __init__(self, limits: Optional[TraceLimits] = None):
        self.limits = limits or TraceLimits()
        self.evaluator = Evaluator(Dialect.PYTHON, self._call_user)

    def run(self, code: str) -> list[ExecutionStep]:
        program = indent_layout(code)
        ctx = TraceContext(program, build_python_functions(program), self.limits)
        first = program.next_code_line(0)
        if first < len(program):
            # A top-level `return` ends the program normally.
            self.execute_block(ctx, first, len(program), program[first].depth, {})
        return ctx.steps

    # --- blocks ---

    def execute_block(self, ctx, start: int, end: int, depth: int, scope: dict) -> Optional[ReturnSignal]:
        i = start
        while i < end:
            line = ctx.program[i]
            if line.is_blank:
                i += 1
                continue
            if line.depth < depth:
                break
            if line.depth > depth:
                # stray over-indented line
                i += 1
                continue
            i, signal = self.execute_line(ctx, i, depth, scope)
            if signal is not None:
                return signal
        return None

    def execute_line(self, ctx, idx: int, depth: int, scope: dict):
        line = ctx.program[idx]
        text = line.text

        if DEF_HEADER.match(text):
            return self._define(ctx, idx, scope), None
        if _IF.match(text):
            return self._conditional(ctx, idx, depth, scope)
        if _ELSE.match(text):
            # an else with no if in front of it: its block is skipped
            return ctx.program.block_end(idx + 1, ctx.program.body_depth(idx)), None
        if _WHILE.match(text):
            return self._while(ctx, idx, scope)
        if _FOR.match(text):
            return self._for(ctx, idx, scope)
        m = _RETURN.match(text)
        if m:
            return idx + 1, self._return(ctx, line, m.group(1), scope)

        self._simple(ctx, line, scope)
        return idx + 1, None

    # --- compound statements ---

    def _define(self, ctx, idx: int, scope: dict) -> int:
        line = ctx.program[idx]
        name = DEF_HEADER.match(line.text).group(1)
        ctx.record(line.number, "define", f"Define function {name}", scope)
        return ctx.program.block_end(idx + 1, ctx.program.body_depth(idx))

    def _conditional(self, ctx, idx: int, depth: int, scope: dict):
        program = ctx.program
        line = program[idx]
        guard = _IF.match(line.text).group(1)
        value = self.evaluator.evaluate(guard, scope, ctx)
        body_depth = program.body_depth(idx)
        body_end = program.block_end(idx + 1, body_depth)

        if value:
            ctx.record(line.number, "condition_true", f"{guard} → True", scope)
            signal = self.execute_block(ctx, idx + 1, body_end, body_depth, scope)
            if signal is not None:
                return body_end, signal
            return self._skip_branches(ctx, body_end, depth), None

        ctx.record(line.number, "condition_false", f"{guard} → False", scope)
        nxt = program.next_code_line(body_end)
        if nxt < len(program) and program[nxt].depth == depth:
            if _ELIF.match(program[nxt].text):
                return self._conditional(ctx, nxt, depth, scope)
            if _ELSE.match(program[nxt].text):
                else_depth = program.body_depth(nxt)
                else_end = program.block_end(nxt + 1, else_depth)
                return else_end, self.execute_block(ctx, nxt + 1, else_end, else_depth, scope)
        return body_end, None

    def _skip_branches(self, ctx, idx: int, depth: int) -> int:
        """Skip the elif/else branches that follow a branch that ran."""
        program = ctx.program
        i = program.next_code_line(idx)
        while i < len(program) and program[i].depth == depth:
            if not (_ELIF.match(program[i].text) or _ELSE.match(program[i].text)):
                break
            i = program.next_code_line(program.block_end(i + 1, program.body_depth(i)))
        return i

    def _while(self, ctx, idx: int, scope: dict):
        line = ctx.program[idx]
        guard = _WHILE.match(line.text).group(1)
        body_depth = ctx.program.body_depth(idx)
        body_end = ctx.program.block_end(idx + 1, body_depth)

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
            signal = self.execute_block(ctx, idx + 1, body_end, body_depth, scope)
            if signal is not None:
                return body_end, signal
            cost = ctx.step_count - before
        return body_end, None

    def _for(self, ctx, idx: int, scope: dict):
        line = ctx.program[idx]
        name, source = _FOR.match(line.text).groups()
        body_depth = ctx.program.body_depth(idx)
        body_end = ctx.program.block_end(idx + 1, body_depth)

        iterable = self.evaluator.evaluate(source, scope, ctx)
        ctx.record(line.number, "loop_start", f"For loop: {name} in {source}", scope)
        if isinstance(iterable, (list, str)):
            items = list(iterable)
        else:
            logger.debug("Cannot iterate over %r on line %d", iterable, line.number + 1)
            items = []

        cost = 1
        for iteration, item in enumerate(items, 1):
            if not ctx.continue_loop(line.number, iteration - 1, cost):
                break
            scope[name] = item
            before = ctx.step_count
            ctx.record(line.number, "loop_check", f"{name} = {python_describe(item)} (iteration {iteration})", scope)
            signal = self.execute_block(ctx, idx + 1, body_end, body_depth, scope)
            if signal is not None:
                return body_end, signal
            cost = ctx.step_count - before
        return body_end, None

    # --- simple statements ---

    def _return(self, ctx, line, expression: str, scope: dict) -> ReturnSignal:
        value = self.evaluator.evaluate(expression, scope, ctx) if expression else None
        ctx.record(line.number, "function_return", f"Return {python_describe(value)}", scope)
        return ReturnSignal(value)

    def _print(self, ctx, line, args_text: str, scope: dict):
        options = {"sep": " ", "end": "\n"}
        values = []
        for arg in split_top_level(args_text):
            m = _KEYWORD.match(arg)
            if not m:
                values.append(self.evaluator.evaluate(arg, scope, ctx))
            elif m.group(1) in options:
                options[m.group(1)] = python_display(self.evaluator.evaluate(m.group(2), scope, ctx))
            else:
                logger.debug("print() on line %d ignores keyword %s", line.number + 1, m.group(1))
        out = options["sep"].join(python_display(v) for v in values)
        ctx.write_output(out, options["end"])
        ctx.record(line.number, "print", f"Output: {out}", scope)

    def _simple(self, ctx, line, scope: dict):
        text = line.text
        m = _PRINT.match(text)
        if m and _closes_at_end(text, m.end() - 1):
            self._print(ctx, line, text[m.end():-1], scope)
            return

        node = self.evaluator.parse(text)
        parts = split_assignment(text)
        if parts and self._assign(ctx, line, *parts, scope):
            return

        if isinstance(node, MethodCall):
            # evaluate the arguments once, then call with their values
            args = [self.evaluator.evaluate(arg, scope, ctx) for arg in node.args]
            self.evaluator.evaluate(MethodCall(node.receiver, node.method, tuple(Literal(a) for a in args)), scope, ctx)
            receiver = text[:text.rfind(f".{node.method}")]
            described = ", ".join(python_describe(a) for a in args)
            ctx.record(line.number, "expression", f"{receiver}.{node.method}({described})", scope)
            return

        if node is None:
            logger.debug("Line %d is not a statement this tracer runs: %r", line.number + 1, text)
        self.evaluator.evaluate(node if node is not None else text, scope, ctx)
        ctx.record(line.number, "expression", f"Evaluated: {text}", scope)

    def _assign_chain(self, ctx, line, chain: list, value_text: str, scope: dict) -> bool:
        """`a = b = value`: one value bound to every target, left to right."""
        targets = [self.evaluator.parse(t) for t in chain]
        if not all(isinstance(t, (Variable, Index)) for t in targets):
            return False
        value = self.evaluator.evaluate(value_text, scope, ctx)
        for target in targets:
            self.evaluator.store(target, value, scope, ctx)
        ctx.record(line.number, "assignment", f"{' = '.join(chain)} = {python_describe(value)}", scope)
        return True

    def _assign(self, ctx, line, target_text: str, op: str, value_text: str, scope: dict) -> bool:
        if op == "=":
            chain = [target_text]
            nested = split_assignment(value_text)
            while nested and nested[1] == "=":
                chain.append(nested[0])
                value_text = nested[2]
                nested = split_assignment(value_text)
            if len(chain) > 1:
                return self._assign_chain(ctx, line, chain, value_text, scope)

        targets = [self.evaluator.parse(t) for t in split_top_level(target_text)]
        if not targets or not all(isinstance(t, (Variable, Index)) for t in targets):
            return False

        if op != "=":
            if len(targets) != 1:
                return False
            value = self.evaluator.evaluate(value_text, scope, ctx)
            current = self.evaluator.evaluate(targets[0], scope, ctx)
            result = self.evaluator.combine(op[:-1], current, value)
            self.evaluator.store(targets[0], result, scope, ctx)
            explanation = f"{target_text} {op} {python_describe(value)} → {python_describe(result)}"
            ctx.record(line.number, "assignment", explanation, scope)
            return True

        if len(targets) == 1:
            values = [self.evaluator.evaluate(value_text, scope, ctx)]
        else:
            sources = split_top_level(value_text)
            if len(sources) == len(targets):
                # every right-hand side is read before anything is written
                values = [self.evaluator.evaluate(s, scope, ctx) for s in sources]
            else:
                packed = self.evaluator.evaluate(value_text, scope, ctx)
                if isinstance(packed, (list, str)) and len(packed) == len(targets):
                    values = list(packed)
                else:
                    values = [UNKNOWN] * len(targets)

        for target, value in zip(targets, values):
            self.evaluator.store(target, value, scope, ctx)
        described = ", ".join(python_describe(v) for v in values)
        ctx.record(line.number, "assignment", f"{target_text} = {described}", scope)
        return True

    # --- calls ---

    def _call_user(self, name: str, args: list, ctx):
        func = ctx.functions.get(name)
        if func is None:
            raise ExpressionError(f"name {name!r} is not defined")
        explanation = f"Call {name}({', '.join(python_describe(a) for a in args)})"
        return ctx.invoke(
            func,
            args,
            lambda local: self.execute_block(ctx, func.body_start, func.body_end, func.body_depth, local),
            explanation,
        )
