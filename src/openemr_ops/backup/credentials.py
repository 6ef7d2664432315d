"""Client option file for the backup tool (``root-credentials.conf``)."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from openemr_ops.core.logging import get_logger

logger = get_logger(__name__)

USER_VARIABLES = ("MARIADB_USER_FROMSCRIPT", "MARIADB_USER", "MYSQL_USER")
PASSWORD_VARIABLES = (
    "MARIADB_PASSWORD_FROMSCRIPT",
    "MARIADB_ROOT_PASSWORD",
    "MYSQL_ROOT_PASSWORD",
    "MARIADB_PASSWORD",
    "MYSQL_PASSWORD",
)


@dataclass(frozen=True, slots=True)
class ClientCredentials:
    user: str | None = None
    password: str | None = None

    def __repr__(self) -> str:
        return f"ClientCredentials(user={self.user!r}, password={'****' if self.password else None})"


def _first_set(environ: Mapping[str, str], names: tuple[str, ...]) -> str | None:
    for name in names:
        value = environ.get(name)
        if value:
            return value
    return None


def resolve_client_credentials(environ: Mapping[str, str] | None = None) -> ClientCredentials:
    """Pick user and password by precedence; the first non-empty variable wins."""
    env = os.environ if environ is None else environ
    return ClientCredentials(
        user=_first_set(env, USER_VARIABLES),
        password=_first_set(env, PASSWORD_VARIABLES),
    )


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def write_client_credentials(path: Path, credentials: ClientCredentials) -> Path:
    """Write a ``[client]`` option file readable only by its owner."""
    path = Path(path)
    lines = ["[client]"]
    if credentials.user:
        lines.append(f"user={_quote(credentials.user)}")
    if credentials.password:
        lines.append(f"password={_quote(credentials.password)}")

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write("\n".join(lines) + "\n")
    path.chmod(0o600)
    logger.info("client_credentials_written", path=str(path), user=credentials.user)
    return path
