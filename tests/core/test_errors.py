"""Tests for openemr_ops.core.errors module."""

from openemr_ops.core.errors import (
    BackupPipelineError,
    CommandError,
    ConfigError,
    DatabaseUnavailableError,
    ErrorCategory,
    LeadershipLostError,
    ManifestError,
    MissingConfigError,
    OpsError,
    RestoreError,
    RoleViolationError,
    TransientError,
    categorize_error,
    is_retryable,
)


class TestOpsError:
    """Test the base error."""

    def test_defaults(self):
        err = OpsError("boom")
        assert err.message == "boom"
        assert err.category is ErrorCategory.INTERNAL
        assert err.retryable is False
        assert err.context == {}

    def test_with_context_is_fluent(self):
        err = OpsError("boom").with_context(marker="docker-leader", epoch=2)
        assert err.context == {"marker": "docker-leader", "epoch": 2}

    def test_cause_is_chained(self):
        cause = OSError("disk full")
        err = OpsError("write failed", cause=cause)
        assert err.__cause__ is cause
        assert err.to_dict()["cause"] == "disk full"

    def test_to_dict(self):
        d = RoleViolationError("no authority").with_context(role="worker").to_dict()
        assert d["error_type"] == "RoleViolationError"
        assert d["category"] == "AUTHORIZATION"
        assert d["retryable"] is False
        assert d["context"] == {"role": "worker"}


class TestSubclasses:
    """Test category and retryability defaults of the hierarchy."""

    def test_transient_is_retryable(self):
        assert TransientError("later").retryable is True
        assert DatabaseUnavailableError("starting").category is ErrorCategory.DATABASE

    def test_fatal_kinds_are_not_retryable(self):
        for err in (ConfigError("x"), LeadershipLostError("x"), RestoreError("x")):
            assert err.retryable is False

    def test_missing_config_records_setting(self):
        err = MissingConfigError("BACKUPVOLUME_TARGET")
        assert "BACKUPVOLUME_TARGET" in err.message
        assert err.context["setting"] == "BACKUPVOLUME_TARGET"
        assert isinstance(err, ConfigError)

    def test_command_error_carries_argv(self):
        err = CommandError(["php", "auto_configure.php"], 255, "connection refused")
        assert err.message == "php exited with status 255"
        assert err.argv == ["php", "auto_configure.php"]
        assert err.returncode == 255
        assert err.stderr == "connection refused"
        assert err.context["program"] == "php"

    def test_backup_errors_share_category(self):
        assert BackupPipelineError("x").category is ErrorCategory.BACKUP
        assert ManifestError("x").category is ErrorCategory.BACKUP


class TestHelpers:
    def test_is_retryable(self):
        assert is_retryable(TransientError("x"))
        assert not is_retryable(ConfigError("x"))
        assert is_retryable(ConnectionError())
        assert not is_retryable(ValueError())

    def test_categorize_error(self):
        assert categorize_error(ManifestError("x")) is ErrorCategory.BACKUP
        assert categorize_error(ConnectionRefusedError()) is ErrorCategory.DATABASE
        assert categorize_error(PermissionError()) is ErrorCategory.STORAGE
        assert categorize_error(KeyError()) is ErrorCategory.INTERNAL
