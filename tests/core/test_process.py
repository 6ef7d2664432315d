"""Tests for CommandRunner against real, always-present programs."""

import sys

import pytest

from openemr_ops.core.errors import CommandError
from openemr_ops.core.process import CommandRunner, mask_argv


def test_mask_argv():
    argv = ["mysql", "--password=s3cret", "-e", "select 1"]
    assert mask_argv(argv, ["s3cret", ""]) == ["mysql", "--password=****", "-e", "select 1"]


class TestCommandRunner:
    def test_captures_output(self):
        outcome = CommandRunner().run([sys.executable, "-c", "print('ready')"])
        assert outcome.ok
        assert outcome.stdout.strip() == "ready"

    def test_nonzero_without_check(self):
        outcome = CommandRunner().run([sys.executable, "-c", "import sys; sys.exit(3)"])
        assert outcome.returncode == 3
        assert not outcome.ok

    def test_nonzero_with_check_raises(self):
        with pytest.raises(CommandError) as exc_info:
            CommandRunner().run(
                [sys.executable, "-c", "import sys; sys.stderr.write('nope'); sys.exit(2)"],
                check=True,
            )
        assert exc_info.value.returncode == 2
        assert exc_info.value.stderr == "nope"

    def test_missing_program_raises(self):
        with pytest.raises(CommandError) as exc_info:
            CommandRunner().run(["definitely-not-a-real-program-openemr"])
        assert exc_info.value.returncode == -1

    def test_secrets_masked_in_error(self):
        runner = CommandRunner(secrets=["hunter2"])
        with pytest.raises(CommandError) as exc_info:
            runner.run(["no-such-binary-hunter2", "--password=hunter2"], check=True)
        assert "hunter2" not in " ".join(exc_info.value.argv)
