"""
Step result envelope.

Provides :class:`StepResult` - the typed outcome every coordinator and
backup step returns instead of relying on process exit status. A step is
either ``SUCCESS``, ``TRANSIENT`` (worth retrying: database still starting,
installer raced the database) or ``FATAL`` (retrying cannot help).

Only ``TRANSIENT`` results are retried, and only by the bounded
:func:`openemr_ops.core.retry.retry_step` combinator.

Examples:
    >>> StepResult.ok(3).value
    3
    >>> StepResult.transient("database not ready").retryable
    True
    >>> StepResult.fatal("bad credentials").status
    <StepStatus.FATAL: 'fatal'>
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from openemr_ops.core.errors import OpsError

T = TypeVar("T")


class StepStatus(str, Enum):
    """Outcome classification of a single step."""

    SUCCESS = "success"
    TRANSIENT = "transient"
    FATAL = "fatal"


@dataclass(frozen=True, slots=True)
class StepResult(Generic[T]):
    """Envelope returned by every state-machine step.

    Factory methods :meth:`ok`, :meth:`transient` and :meth:`fatal` should be
    used instead of the constructor directly.

    Attributes:
        status: Outcome classification.
        value: Payload on success (``None`` otherwise).
        message: Human-readable description of a failure.
        error: The exception behind a failure, if any.
        metadata: Extra key/value pairs for logging.
    """

    status: StepStatus
    value: T | None = None
    message: str = ""
    error: Exception | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------------ #
    # Factory helpers
    # ------------------------------------------------------------------ #

    @classmethod
    def ok(cls, value: T | None = None, **metadata: Any) -> StepResult[T]:
        """Create a successful result."""
        return cls(status=StepStatus.SUCCESS, value=value, metadata=metadata)

    @classmethod
    def transient(
        cls, message: str, error: Exception | None = None, **metadata: Any
    ) -> StepResult[T]:
        """Create a retryable failure."""
        return cls(status=StepStatus.TRANSIENT, message=message, error=error, metadata=metadata)

    @classmethod
    def fatal(
        cls, message: str, error: Exception | None = None, **metadata: Any
    ) -> StepResult[T]:
        """Create a non-retryable failure."""
        return cls(status=StepStatus.FATAL, message=message, error=error, metadata=metadata)

    # ------------------------------------------------------------------ #
    # Inspection
    # ------------------------------------------------------------------ #

    @property
    def success(self) -> bool:
        return self.status is StepStatus.SUCCESS

    @property
    def retryable(self) -> bool:
        return self.status is StepStatus.TRANSIENT

    def raise_for_status(self, error_type: type[OpsError] = OpsError) -> T | None:
        """Return the value on success, raise on any failure.

        The carried error is re-raised as-is when it already is an
        :class:`OpsError`; otherwise it is wrapped in ``error_type``.
        """
        if self.success:
            return self.value
        if isinstance(self.error, OpsError):
            raise self.error
        raise error_type(self.message or self.status.value, cause=self.error)

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a plain dict (for structured logs)."""
        d: dict[str, Any] = {"status": self.status.value}
        if self.value is not None:
            d["value"] = self.value
        if self.message:
            d["message"] = self.message
        if self.error is not None:
            d["error"] = str(self.error)
        if self.metadata:
            d["metadata"] = dict(self.metadata)
        return d
