"""
Public entry point: trace a program in either dialect.

    trace_code(source, "python")  -> list[ExecutionStep]
    trace_json(source, "c")       -> JSON string for the visualizer
"""
import json
import logging
from typing import Optional, Union

from c_tracer import CTracer
from config import TraceLimits
from script_tracer import ScriptTracer
from trace_types import Dialect, ExecutionStep, StepBudgetExceeded

logger = logging.getLogger(__name__)


def trace_code(source: str, dialect: Union[Dialect, str], limits: Optional[TraceLimits] = None) -> list[ExecutionStep]:
    """Run `source` and return every recorded step.

    Raises StepBudgetExceeded when the run records more steps, or nests
    calls deeper, than `limits` allow. Raises ValueError for an unknown
    dialect.
    """
    dialect = Dialect(dialect)
    limits = limits or TraceLimits.from_env()
    if dialect is Dialect.C:
        return CTracer(limits).run(source)
    return ScriptTracer(limits).run(source)


def trace_events(source: str, dialect: Union[Dialect, str], limits: Optional[TraceLimits] = None) -> list[dict]:
    """Steps as camelCase dicts; a budget overrun becomes a single error event."""
    try:
        steps = trace_code(source, dialect, limits)
    except StepBudgetExceeded as e:
        logger.info("Trace aborted: %s", e)
        return [{"event": "error", "error_type": type(e).__name__, "error_message": str(e)}]
    logger.info("Traced %d steps", len(steps))
    return [step.model_dump(by_alias=True) for step in steps]


def trace_json(source: str, dialect: Union[Dialect, str], limits: Optional[TraceLimits] = None) -> str:
    return json.dumps(trace_events(source, dialect, limits))
