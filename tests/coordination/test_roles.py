"""Tests for role computation."""

import pytest

from openemr_ops.coordination.roles import OrchestrationMode, Role, compute_role
from openemr_ops.core.errors import ConfigError


@pytest.mark.parametrize(
    ("hint", "authority", "operator"),
    [
        (None, True, True),
        ("", True, True),
        ("admin", True, False),
        ("ADMIN ", True, False),
        ("worker", False, True),
        (OrchestrationMode.WORKER, False, True),
    ],
)
def test_compute_role(hint, authority, operator):
    role = compute_role(hint)
    assert role.authority is authority
    assert role.operator is operator


def test_unknown_hint_is_config_error():
    with pytest.raises(ConfigError):
        compute_role("leader")


def test_with_authority_keeps_operator():
    follower = Role().with_authority(False)
    assert follower == Role(authority=False, operator=True)
    assert follower.describe() == "AUTHORITY=no OPERATOR=yes"
