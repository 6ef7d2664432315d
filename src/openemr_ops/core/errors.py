"""
Structured error types for openemr-ops.

Every failure the coordinator or the backup manager can hit is raised as a
subclass of :class:`OpsError`. Errors carry a category (for routing log
alerts), a retryable flag (consumed by the retry combinator), a context
mapping, and the chained cause.

Manifesto:
    - **Typed taxonomy:** transient dependency failures, role violations,
      verification mismatches, best-effort failures and backup pipeline
      failures are distinct types, so callers decide on type, not on text
    - **Explicit retry semantics:** only ``TransientError`` is retryable
    - **Rich context:** errors carry key/value context for structured logs
    - **Error chaining:** the original exception is preserved as ``cause``

Architecture:
    ::

        ┌────────────────────────────────────────────────────────────────┐
        │                           OpsError                             │
        │            (category, retryable, context, cause)               │
        ├────────────────────────────────────────────────────────────────┤
        │  TransientError          ConfigError          CommandError     │
        │  └ DatabaseUnavailable   └ MissingConfig                       │
        │                                                                │
        │  RoleViolationError      VerificationError    InstallError     │
        │  LeadershipLostError     CertificateError     UpgradeError     │
        │                                                                │
        │  BackupError             RestoreError                          │
        │  ├ BackupPipelineError                                         │
        │  └ ManifestError                                               │
        └────────────────────────────────────────────────────────────────┘

Usage:
    from openemr_ops.core.errors import RoleViolationError

    if not role.authority and not installation.is_configured():
        raise RoleViolationError(
            "worker is trying to run on a missing configuration"
        ).with_context(sqlconf=str(installation.sqlconf_path))
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and log routing."""

    DATABASE = "DATABASE"            # Database unreachable or still starting
    STORAGE = "STORAGE"              # Shared volume, backup target, data dir
    CONFIG = "CONFIG"                # Missing/invalid settings
    AUTHORIZATION = "AUTHORIZATION"  # Role violations (no authority)
    VERIFICATION = "VERIFICATION"    # Independent check disagrees with a tool
    COORDINATION = "COORDINATION"    # Leadership, markers
    BACKUP = "BACKUP"                # Backup pipeline, manifest chain
    RESTORE = "RESTORE"              # Restore replay
    EXTERNAL = "EXTERNAL"            # External command failures
    INTERNAL = "INTERNAL"            # Bugs, unexpected state


class OpsError(Exception):
    """
    Base exception for all openemr-ops errors.

    Subclasses set ``default_category`` and ``default_retryable`` so the
    common case needs only a message.

    Examples:
        >>> error = OpsError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False
        >>> error.with_context(marker="docker-leader").context["marker"]
        'docker-leader'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> OpsError:
        """Add context to this error (fluent API)."""
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.context:
            result["context"] = dict(self.context)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (retryable)
# =============================================================================


class TransientError(OpsError):
    """Temporary failure of an external dependency; may succeed on retry."""

    default_category = ErrorCategory.EXTERNAL
    default_retryable = True


class DatabaseUnavailableError(TransientError):
    """Database unreachable or still starting."""

    default_category = ErrorCategory.DATABASE


# =============================================================================
# CONFIGURATION
# =============================================================================


class ConfigError(OpsError):
    """Invalid configuration. Never retryable."""

    default_category = ErrorCategory.CONFIG


class MissingConfigError(ConfigError):
    """A required setting or file is missing."""

    def __init__(self, setting: str, message: str | None = None, **kwargs: Any):
        super().__init__(message or f"Missing required configuration: {setting}", **kwargs)
        self.context.setdefault("setting", setting)


# =============================================================================
# COORDINATOR
# =============================================================================


class RoleViolationError(OpsError):
    """A process without authority found state only an authority may fix."""

    default_category = ErrorCategory.AUTHORIZATION


class LeadershipLostError(OpsError):
    """The leadership marker no longer names this process."""

    default_category = ErrorCategory.COORDINATION


class VerificationError(OpsError):
    """A tool reported success but independent verification disagrees."""

    default_category = ErrorCategory.VERIFICATION


class InstallError(OpsError):
    """First-run installation failed permanently."""

    default_category = ErrorCategory.EXTERNAL


class UpgradeError(OpsError):
    """A versioned upgrade step failed."""

    default_category = ErrorCategory.EXTERNAL


class CertificateError(OpsError):
    """Webserver certificate provisioning failed."""

    default_category = ErrorCategory.STORAGE


class CommandError(OpsError):
    """External command exited non-zero."""

    default_category = ErrorCategory.EXTERNAL

    def __init__(self, argv: list[str], returncode: int, stderr: str = "", **kwargs: Any):
        program = argv[0] if argv else "<empty>"
        super().__init__(f"{program} exited with status {returncode}", **kwargs)
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        self.context.setdefault("program", program)
        self.context.setdefault("returncode", returncode)


# =============================================================================
# BACKUP / RESTORE
# =============================================================================


class BackupError(OpsError):
    """Backup chain failure."""

    default_category = ErrorCategory.BACKUP


class BackupPipelineError(BackupError):
    """The streaming backup pipeline failed; the artifact is unusable."""


class ManifestError(BackupError):
    """A manifest is missing, empty or malformed."""


class RestoreError(OpsError):
    """Restore replay failed."""

    default_category = ErrorCategory.RESTORE


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, OpsError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, OpsError):
        return error.category
    if isinstance(error, ConnectionError):
        return ErrorCategory.DATABASE
    if isinstance(error, OSError):
        return ErrorCategory.STORAGE
    return ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "OpsError",
    "TransientError",
    "DatabaseUnavailableError",
    "ConfigError",
    "MissingConfigError",
    "RoleViolationError",
    "LeadershipLostError",
    "VerificationError",
    "InstallError",
    "UpgradeError",
    "CertificateError",
    "CommandError",
    "BackupError",
    "BackupPipelineError",
    "ManifestError",
    "RestoreError",
    "is_retryable",
    "categorize_error",
]
