"""
Per-run state of a trace: the step log, accumulated output, call stack and
step counter, plus the read-only program and function table of the run.

Executors and the evaluator receive the context explicitly; nothing about a
run lives anywhere else, so independent runs never share state.
"""
import logging

from config import TraceLimits
from trace_types import ExecutionStep, StackFrame, StepBudgetExceeded, snapshot

logger = logging.getLogger(__name__)


class TraceContext:
    def __init__(self, program, functions: dict, limits: TraceLimits):
        self.program = program
        self.functions = functions
        self.limits = limits
        self.steps: list[ExecutionStep] = []
        self.output: list[str] = []
        self.call_stack: list[StackFrame] = []
        self.step_count = 0
        self._line_open = False

    def record(self, line: int, kind: str, explanation: str, scope: dict):
        self.step_count += 1
        if self.step_count > self.limits.max_steps:
            raise StepBudgetExceeded(f"Max steps exceeded ({self.limits.max_steps})")
        self.steps.append(ExecutionStep(
            line=line,
            kind=kind,
            explanation=explanation,
            variables=snapshot(scope),
            call_stack=[
                StackFrame(function_name=frame.function_name, args=snapshot(frame.args))
                for frame in self.call_stack
            ],
            output=list(self.output),
        ))

    def write_output(self, text: str, end: str = "\n"):
        """Add one output entry.

        An `end` without a trailing newline leaves the entry open, and the
        next write continues it.
        """
        closes = end.endswith("\n")
        text += end[:-1] if closes else end
        if self._line_open:
            self.output[-1] += text
        else:
            self.output.append(text)
        self._line_open = not closes

    def continue_loop(self, line: int, iteration: int, cost: int) -> bool:
        """Whether a loop may start another iteration.

        `cost` is the number of steps the previous iteration recorded. A loop
        stops silently at the iteration cap, or once another iteration would
        leave nothing of the step budget for the rest of the program.
        """
        if iteration >= self.limits.max_loop_iterations:
            logger.warning("Loop on line %d stopped after %d iterations", line + 1, iteration)
            return False
        if self.limits.max_steps - self.step_count <= cost:
            logger.warning(
                "Loop on line %d stopped after %d iterations, %d of %d steps used",
                line + 1, iteration, self.step_count, self.limits.max_steps,
            )
            return False
        return True

    def invoke(self, func, args: list, run_body, explanation: str):
        """Run a user function in a fresh scope and return its value.

        `run_body(local_scope)` executes the body and returns a ReturnSignal
        or None; falling off the end of the body yields None.
        """
        if len(self.call_stack) >= self.limits.max_call_depth:
            raise StepBudgetExceeded(
                f"Max call depth exceeded ({self.limits.max_call_depth}) calling {func.name}"
            )
        local = {name: args[i] if i < len(args) else None for i, name in enumerate(func.params)}
        if len(args) > len(func.params):
            logger.debug("%s() ignores %d extra argument(s)", func.name, len(args) - len(func.params))

        self.call_stack.append(StackFrame(function_name=func.name, args=snapshot(local)))
        try:
            self.record(func.header_line, "function_call", explanation, local)
            signal = run_body(local)
        except RecursionError:
            # deeply nested blocks can exhaust the interpreter stack before max_call_depth
            raise StepBudgetExceeded(
                f"Max call depth exceeded ({len(self.call_stack)} nested calls) calling {func.name}"
            ) from None
        finally:
            self.call_stack.pop()
        return signal.value if signal is not None else None
