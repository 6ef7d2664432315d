"""Readiness checks for the database and Redis, and Redis-backed PHP sessions."""

from __future__ import annotations

import socket
from collections.abc import Callable
from dataclasses import dataclass

from openemr_ops.core.clock import Clock
from openemr_ops.core.errors import CommandError, DatabaseUnavailableError
from openemr_ops.core.logging import get_logger
from openemr_ops.core.process import CommandRunner
from openemr_ops.core.result import StepResult
from openemr_ops.core.retry import ConstantBackoff, LinearBackoff, retry_step
from openemr_ops.coordination.settings import CoordinatorSettings

logger = get_logger(__name__)

DEFAULT_REDIS_PORT = 6379
REDIS_SESSION_INI = "99-redis-sessions.ini"
REDIS_CONFIGURED_MARKER = "php-redis-configured"

Connector = Callable[[str, int], None]


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


def database_ping_argv(settings: CoordinatorSettings) -> list[str]:
    return [
        settings.mysqladmin_binary,
        "ping",
        f"--host={settings.mysql_host}",
        f"--port={settings.mysql_port}",
        f"--user={settings.mysql_root_user}",
        f"--password={settings.root_password}",
        "--silent",
    ]


def wait_for_database(
    settings: CoordinatorSettings,
    runner: CommandRunner,
    clock: Clock | None = None,
    heartbeat: Callable[[], None] | None = None,
) -> int:
    """Poll ``mysqladmin ping`` until the database answers.

    One immediate check, then up to ``db_wait_attempts`` retries with a delay
    rising from 1s to a 5s cap. ``heartbeat`` runs before every retry so a
    leader keeps its lease during a long wait. Returns the number of
    attempts made.

    Raises:
        DatabaseUnavailableError: the database never answered.
    """
    argv = database_ping_argv(settings)
    attempts = 0

    def ping() -> StepResult[None]:
        nonlocal attempts
        attempts += 1
        try:
            outcome = runner.run(argv)
        except CommandError as exc:
            return StepResult.fatal(str(exc), exc)
        if outcome.ok:
            return StepResult.ok()
        return StepResult.transient("database not ready")

    def on_retry(attempt: int, result: StepResult, delay: float) -> None:
        if heartbeat is not None:
            heartbeat()
        if attempt % 5 == 0 or delay <= 2:
            logger.info("database_not_ready", attempt=attempt, retry_in_s=delay)

    logger.info("waiting_for_database", host=settings.mysql_host, port=settings.mysql_port)
    result = retry_step(
        ping,
        LinearBackoff(
            max_attempts=settings.db_wait_attempts + 1,
            base_delay=1.0,
            increment=1.0,
            max_delay=5.0,
        ),
        clock=clock,
        on_retry=on_retry,
        name="wait_for_database",
    )
    if not result.success:
        raise DatabaseUnavailableError(
            f"Timed out waiting for database at {settings.mysql_host}:{settings.mysql_port}",
            cause=result.error,
        ).with_context(attempts=attempts)
    logger.info("database_ready", attempts=attempts)
    return attempts


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RedisAddress:
    host: str
    port: int = DEFAULT_REDIS_PORT

    @classmethod
    def parse(cls, value: str) -> RedisAddress:
        """Parse ``host[:port]``."""
        host, _, port = value.strip().partition(":")
        port = port.split(":", 1)[0]
        return cls(host=host, port=int(port) if port else DEFAULT_REDIS_PORT)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


def tcp_connect(host: str, port: int) -> None:
    with socket.create_connection((host, port), timeout=1.0):
        pass


def wait_for_redis(
    address: RedisAddress,
    clock: Clock | None = None,
    attempts: int = 10,
    connect: Connector = tcp_connect,
) -> bool:
    """Open a TCP connection to Redis up to ``attempts`` times, one second apart."""

    def ping() -> StepResult[None]:
        try:
            connect(address.host, address.port)
        except OSError as exc:
            return StepResult.transient(str(exc), exc)
        return StepResult.ok()

    result = retry_step(
        ping,
        ConstantBackoff(max_attempts=attempts, delay=1.0),
        clock=clock,
        name="wait_for_redis",
    )
    return result.success


def build_redis_save_path(settings: CoordinatorSettings) -> str:
    """PHP ``session.save_path`` for the configured Redis server."""
    address = RedisAddress.parse(settings.redis_server)
    params: list[str] = []
    if settings.redis_password:
        if settings.redis_username:
            params.append(f"auth[user]={settings.redis_username}")
        params.append(f"auth[pass]={settings.redis_password}")

    certs = settings.certificate_dir
    if settings.redis_x509:
        params.extend(
            [
                f"stream[cafile]=file://{certs / 'redis-ca'}",
                f"stream[local_cert]=file://{certs / 'redis-cert'}",
                f"stream[local_pk]=file://{certs / 'redis-key'}",
            ]
        )
        scheme = "tls"
    elif settings.redis_tls:
        params.append(f"stream[cafile]=file://{certs / 'redis-ca'}")
        scheme = "tls"
    else:
        scheme = "tcp"

    path = f"{scheme}://{address}"
    if params:
        path += "?" + "&".join(params)
    return path


def configure_redis_sessions(
    settings: CoordinatorSettings,
    clock: Clock | None = None,
    connect: Connector = tcp_connect,
) -> bool:
    """Switch PHP sessions to Redis once per container.

    Returns True when Redis sessions are configured (now or earlier). An
    unreachable Redis leaves file sessions in place with a warning.
    """
    if not settings.redis_server:
        return False
    marker = settings.container_state_dir / REDIS_CONFIGURED_MARKER
    if marker.exists():
        return True

    address = RedisAddress.parse(settings.redis_server)
    if not wait_for_redis(address, clock=clock, connect=connect):
        logger.warning("redis_unavailable", server=str(address), fallback="file sessions")
        return False

    save_path = build_redis_save_path(settings)
    ini = settings.php_conf_dir / REDIS_SESSION_INI
    try:
        settings.php_conf_dir.mkdir(parents=True, exist_ok=True)
        ini.write_text(
            f'session.save_handler = redis\nsession.save_path = "{save_path}"\n',
            encoding="utf-8",
        )
        marker.parent.mkdir(parents=True, exist_ok=True)
        marker.touch()
    except OSError as exc:
        try:
            ini.unlink(missing_ok=True)
        except OSError:
            logger.warning("redis_session_ini_left_behind", path=str(ini))
        logger.warning(
            "redis_sessions_not_configured",
            server=str(address),
            error=str(exc),
            fallback="file sessions",
        )
        return False
    logger.info(
        "redis_sessions_configured",
        server=str(address),
        tls=settings.redis_tls or settings.redis_x509,
    )
    return True
