import logging
import os

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

# Environment variable -> TraceLimits field
_ENV_VARS = {
    "TRACE_MAX_STEPS": "max_steps",
    "TRACE_MAX_LOOP_ITERATIONS": "max_loop_iterations",
    "TRACE_MAX_CALL_DEPTH": "max_call_depth",
    "TRACE_MAX_CALLS_PER_EXPRESSION": "max_calls_per_expression",
}


class TraceLimits(BaseModel):
    """Safety limits that bound a single trace run."""
    model_config = ConfigDict(frozen=True)

    max_steps: int = 500
    max_loop_iterations: int = 200
    max_call_depth: int = 50
    max_calls_per_expression: int = 20

    @classmethod
    def from_env(cls) -> "TraceLimits":
        values = {}
        for var, field in _ENV_VARS.items():
            raw = os.getenv(var)
            if raw is None or not raw.strip():
                continue
            try:
                number = int(raw)
            except ValueError:
                logger.warning("Ignoring %s=%r: not an integer", var, raw)
                continue
            if number <= 0:
                logger.warning("Ignoring %s=%r: must be positive", var, raw)
                continue
            values[field] = number
        return cls(**values)
