"""Shared base settings for openemr-ops processes.

Both subsystems read their configuration from the container environment.
``OpsBaseSettings`` carries what every process needs (log level and format)
so the coordinator and backup settings only declare their own fields.

Examples:
    >>> from openemr_ops.core.settings import OpsBaseSettings
    >>> class ReportSettings(OpsBaseSettings):
    ...     report_dir: str = "/tmp"
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import TypeVar

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from openemr_ops.core.errors import ConfigError

S = TypeVar("S", bound=BaseSettings)


class OpsBaseSettings(BaseSettings):
    """Common settings shared by every openemr-ops process.

    Fields
    ──────
    log_level  : structlog log level
    log_json   : JSON log output; unset means auto-detect (JSON when not a tty)
    """

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool | None = Field(default=None, description="Force JSON logs on/off")


def load_settings(settings_cls: type[S], **overrides: object) -> S:
    """Instantiate ``settings_cls``, turning validation failures into ``ConfigError``."""
    try:
        return settings_cls(**overrides)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise ConfigError(
            f"Invalid {settings_cls.__name__}: {', '.join(fields) or 'unknown field'}",
            cause=exc,
        ) from exc


_VAR_RE = re.compile(
    r"""
    ^\s*
    (?:export\s+)?            # optional "export " prefix
    (?P<key>[A-Za-z_]\w*)
    \s*=\s*
    (?P<value>.*)
    $
    """,
    re.VERBOSE,
)


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a shell-style ``KEY=value`` file (the client ``properties`` files).

    Handles blank and comment lines, ``export`` prefixes, single or double
    quoted values and inline ``# comments`` outside quotes.
    """
    result: dict[str, str] = {}
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        match = _VAR_RE.match(line)
        if match is None:
            continue
        value = match.group("value").strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]
        elif " #" in value:
            value = value[: value.index(" #")].rstrip()
        result[match.group("key")] = value
    return result


def layered_environ(*files: Path, environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """``files`` merged in order (last wins), then the process environment on top.

    Same precedence as pydantic-settings ``env_file`` handling: a variable
    set in the environment always beats the value in a file. Missing files
    are skipped.
    """
    merged: dict[str, str] = {}
    for path in files:
        if Path(path).is_file():
            merged.update(parse_env_file(path))
    merged.update(os.environ if environ is None else environ)
    return merged
