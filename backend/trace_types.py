"""
Shared data types for the tracing interpreters: the dialect tag, the step and
stack-frame records handed to the visualizer, the return signal used to
unwind function bodies, and the errors a run can raise.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class Dialect(str, Enum):
    PYTHON = "python"
    C = "c"

    @classmethod
    def _missing_(cls, value):
        # "A"/"B" and any casing of the canonical names
        if isinstance(value, str):
            key = value.strip().lower()
            aliases = {"a": cls.PYTHON, "b": cls.C, "py": cls.PYTHON}
            if key in aliases:
                return aliases[key]
            for member in cls:
                if member.value == key:
                    return member
        return None


StepKind = Literal[
    "assignment",
    "print",
    "condition_true",
    "condition_false",
    "loop_start",
    "loop_check",
    "function_call",
    "function_return",
    "expression",
    "define",
]


class StackFrame(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    function_name: str = Field(alias="functionName")
    args: dict[str, Any] = Field(default_factory=dict)


class ExecutionStep(BaseModel):
    """One recorded statement. Never mutated after it is appended to a trace."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    line: int
    kind: StepKind
    explanation: str
    variables: dict[str, Any]
    call_stack: list[StackFrame] = Field(alias="callStack")
    output: list[str]


@dataclass(frozen=True)
class ReturnSignal:
    """Carries a `return` value up the block recursion to the innermost call.

    Only ever used for returning from a function; errors never travel this way.
    """
    value: Any


class _Unknown:
    """Value of an expression that could not be evaluated."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "undefined"

    def __bool__(self):
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


UNKNOWN = _Unknown()


class TraceError(Exception):
    pass


class StepBudgetExceeded(TraceError):
    """The run recorded more steps (or nested more calls) than allowed."""


class ExpressionError(TraceError):
    """Raised inside the evaluator; always recovered as UNKNOWN."""


def snapshot(value):
    """Deep, independent copy of a runtime value for a step record."""
    if isinstance(value, list):
        return [snapshot(v) for v in value]
    if isinstance(value, dict):
        return {k: snapshot(v) for k, v in value.items()}
    if value is UNKNOWN:
        return None
    return value
