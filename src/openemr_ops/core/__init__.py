"""openemr-ops core -- ambient primitives shared by both subsystems.

Architecture::

    errors.py    Structured error hierarchy (OpsError, TransientError, ...)
    result.py    StepResult envelope (SUCCESS / TRANSIENT / FATAL)
    retry.py     Backoff strategies + retry_step combinator
    clock.py     Clock protocol (time, sleep) + SystemClock
    logging.py   structlog configuration, context binding, log_step
    settings.py  pydantic-settings base class + load_settings
    process.py   CommandRunner for external programs
"""

from openemr_ops.core.clock import Clock, SystemClock
from openemr_ops.core.errors import ErrorCategory, OpsError
from openemr_ops.core.result import StepResult, StepStatus

__all__ = [
    "Clock",
    "SystemClock",
    "ErrorCategory",
    "OpsError",
    "StepResult",
    "StepStatus",
]
