"""
First-run installation of the application.

The PHP installer (``auto_configure.php``) is treated as an opaque external
command. Its exit status alone is not trusted: after a successful run the
installed configuration (``sites/default/sqlconf.php``) is re-read and must
say ``$config = 1``.

Manifesto:
    - **Transient by default:** an installer failure usually means the
      database is not ready yet, so each failed attempt is ``TRANSIENT``
    - **Independent verification:** success that the configuration file
      disagrees with is ``FATAL`` (``VerificationError``)
    - **Bounded:** attempts are capped by ``install_max_attempts``; the
      caller turns exhaustion into ``InstallError``
"""

from __future__ import annotations

import os
import re
import shutil
from collections.abc import Callable, Mapping
from pathlib import Path

from openemr_ops.core.clock import Clock
from openemr_ops.core.errors import CommandError, InstallError, VerificationError
from openemr_ops.core.logging import get_logger
from openemr_ops.core.process import CommandRunner
from openemr_ops.core.result import StepResult
from openemr_ops.core.retry import SteppedBackoff, retry_step
from openemr_ops.coordination.settings import CoordinatorSettings

logger = get_logger(__name__)

_CONFIG_FLAG = re.compile(r"\$config\s*=\s*(\d+)\s*;")
_SETTING_NAME = re.compile(r"^[A-Za-z0-9_]+$")

SETUP_SCRIPTS = (
    "admin.php",
    "setup.php",
    "auto_configure.php",
    "acl_upgrade.php",
    "sql_patch.php",
    "sql_upgrade.php",
    "ippf_upgrade.php",
)

OPCACHE_SETTINGS = (
    ("opcache.enable", "1"),
    ("opcache.enable_cli", "1"),
    ("opcache.file_cache", "{cache_dir}"),
    ("opcache.file_cache_only", "1"),
    ("opcache.file_cache_consistency_checks", "1"),
    ("opcache.enable_file_override", "1"),
    ("opcache.max_accelerated_files", "1000000"),
)

INSTALL_HINTS = (
    "No database container is running, or this container is not connected to it",
    "The database is still starting up and was not ready for connections",
    "The database credentials are incorrect",
)


class InstallationCheck:
    """Answers "is this installation usable" from ``sqlconf.php``."""

    def __init__(self, sqlconf_path: Path) -> None:
        self.sqlconf_path = Path(sqlconf_path)

    def is_configured(self) -> bool:
        try:
            text = self.sqlconf_path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return False
        matches = _CONFIG_FLAG.findall(text)
        return bool(matches) and int(matches[-1]) != 0


def build_install_arguments(settings: CoordinatorSettings) -> list[str]:
    """``key=value`` tokens understood by the installer script."""
    return [
        f"server={settings.mysql_host}",
        f"port={settings.mysql_port}",
        f"rootpass={settings.root_password}",
        f"root={settings.mysql_root_user}",
        f"login={settings.mysql_user}",
        f"pass={settings.mysql_pass}",
        f"dbname={settings.mysql_database}",
        f"collate={settings.mysql_collation}",
        "loginhost=%",
        f"iuser={settings.oe_user}",
        f"iuname={settings.oe_user_name}",
        f"iuserpass={settings.oe_pass}",
    ]


class AutoConfigurator:
    """Runs the installer with retry and verification."""

    def __init__(
        self,
        settings: CoordinatorSettings,
        runner: CommandRunner,
        installation: InstallationCheck | None = None,
        cache_dir: Path = Path("/tmp/php-file-cache"),
    ) -> None:
        self.settings = settings
        self.runner = runner
        self.installation = installation or InstallationCheck(settings.sqlconf_path)
        self.cache_dir = Path(cache_dir)

    @property
    def ini_path(self) -> Path:
        return self.settings.oe_root / "auto_configure.ini"

    def _write_ini(self) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        lines = [
            f"{key}={value.format(cache_dir=self.cache_dir)}" for key, value in OPCACHE_SETTINGS
        ]
        self.ini_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    def _cleanup(self) -> None:
        self.ini_path.unlink(missing_ok=True)
        shutil.rmtree(self.cache_dir, ignore_errors=True)

    def attempt(self) -> StepResult[None]:
        """One installer run followed by verification."""
        script = self.settings.installer_script
        if not script.is_file():
            return StepResult.fatal(
                f"Installer script not found: {script}",
                InstallError("Installer script not found").with_context(path=str(script)),
            )

        argv = [
            self.settings.php_binary,
            "-c",
            str(self.ini_path),
            str(script),
            *build_install_arguments(self.settings),
        ]
        self._write_ini()
        try:
            outcome = self.runner.run(argv, cwd=self.settings.oe_root)
        except CommandError as exc:
            error = InstallError(f"Cannot run the installer: {exc.message}", cause=exc)
            return StepResult.fatal(error.message, error)
        finally:
            self._cleanup()

        if not outcome.ok:
            return StepResult.transient(
                f"Installer exited with status {outcome.returncode}",
                returncode=outcome.returncode,
            )

        if not self.installation.is_configured():
            error = VerificationError(
                "Installer reported success but the configuration is not marked complete"
            ).with_context(sqlconf=str(self.installation.sqlconf_path))
            return StepResult.fatal(error.message, error)

        logger.info("installer_succeeded")
        return StepResult.ok()

    def install(
        self,
        clock: Clock | None = None,
        heartbeat: Callable[[], None] | None = None,
    ) -> None:
        """Run :meth:`attempt` until success, a fatal result or exhaustion.

        Raises:
            VerificationError: the installer succeeded but verification failed.
            InstallError: attempts exhausted or the installer is missing.
        """

        def on_retry(attempt: int, result: StepResult, delay: float) -> None:
            if heartbeat is not None:
                heartbeat()
            if attempt == 1:
                logger.warning("install_failed_hints", reason=result.message, hints=list(INSTALL_HINTS))
            elif attempt <= 5:
                logger.info("install_retrying", attempt=attempt, delay_s=delay)

        def step() -> StepResult[None]:
            if heartbeat is not None:
                heartbeat()
            return self.attempt()

        result = retry_step(
            step,
            SteppedBackoff(max_attempts=self.settings.install_max_attempts),
            clock=clock,
            on_retry=on_retry,
            name="install",
        )
        if result.retryable:
            raise InstallError(
                f"Installation did not succeed after {self.settings.install_max_attempts} attempts"
            ).with_context(reason=result.message)
        result.raise_for_status(InstallError)


def _sql_literal(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "''") + "'"


class GlobalSettingsApplier:
    """Applies ``OPENEMR_SETTING_<name>`` variables to the ``globals`` table."""

    def __init__(
        self,
        settings: CoordinatorSettings,
        runner: CommandRunner,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.settings = settings
        self.runner = runner
        self.environ = environ

    def statements(self) -> list[tuple[str, str]]:
        pairs = []
        for name, value in CoordinatorSettings.global_settings(self.environ).items():
            if not _SETTING_NAME.match(name):
                logger.warning("global_setting_skipped", name=name)
                continue
            pairs.append(
                (
                    name,
                    f"UPDATE globals SET gl_value = {_sql_literal(value)} "
                    f"WHERE gl_name = {_sql_literal(name)}",
                )
            )
        return pairs

    def apply(self) -> list[str]:
        """Apply every setting. Failures are logged and skipped."""
        applied: list[str] = []
        s = self.settings
        for name, sql in self.statements():
            argv = [
                s.mysql_client,
                f"--host={s.mysql_host}",
                f"--port={s.mysql_port}",
                f"--user={s.mysql_user}",
                f"--password={s.mysql_pass}",
                "-e",
                sql,
                s.mysql_database,
            ]
            try:
                outcome = self.runner.run(argv)
            except CommandError as exc:
                logger.warning("global_setting_failed", name=name, error=str(exc))
                continue
            if outcome.ok:
                applied.append(name)
            else:
                logger.warning(
                    "global_setting_failed", name=name, returncode=outcome.returncode
                )
        if applied:
            logger.info("global_settings_applied", names=applied)
        return applied


def cleanup_setup_scripts(oe_root: Path) -> list[str]:
    """Remove installer-only scripts. Upgrade scripts are kept."""
    removed = []
    for name in SETUP_SCRIPTS:
        path = Path(oe_root) / name
        if path.exists():
            path.unlink()
            removed.append(name)
    if removed:
        logger.info("setup_scripts_removed", scripts=removed)
    return removed


def secure_template_cache(site_dir: Path) -> None:
    """Template cache: directories 0700, files 0600."""
    smarty = Path(site_dir) / "documents" / "smarty"
    if not smarty.is_dir():
        return
    for dirpath, dirnames, filenames in os.walk(smarty):
        os.chmod(dirpath, 0o700)
        for filename in filenames:
            os.chmod(os.path.join(dirpath, filename), 0o600)


def finalize_permissions(oe_root: Path) -> None:
    """Lock down the configured site after setup."""
    site = Path(oe_root) / "sites" / "default"
    try:
        secure_template_cache(site)
        sqlconf = site / "sqlconf.php"
        if sqlconf.exists():
            sqlconf.chmod(0o400)
        if site.is_dir():
            site.chmod(0o500)
    except OSError as exc:
        logger.warning("permissions_not_finalized", path=str(site), error=str(exc))
        return
    logger.info("permissions_finalized", site=str(site))
