"""
Container boot sequence.

``StartupCoordinator.run()`` is what a container executes at every boot, in
every replica. It decides this process's role, coordinates with the other
replicas, drives the install/upgrade state machine when it has authority,
and finally reports whether the process should serve traffic.

Manifesto:
    - **Sequential:** stages run strictly one after another; the leader
      heartbeats after each one
    - **Idempotent:** on a configured, up-to-date installation the
      sequence is a cheap no-op apart from re-applying global settings
    - **Fail loudly:** any fatal condition ends the run with
      ``ExitCode.FATAL`` and a logged diagnostic; orchestration restarts us

Architecture:
    ::

        run()
          1  role            compute_role(K8S)
          2  swarm_mode      election / follower wait / in-progress marker
          3  upgrade_check   authority only, UP_TO_DATE -> UPGRADING -> UP_TO_DATE
          4  config_check    follower without configuration -> FATAL
          5  ssl             certificate command (fatal only for authority)
          6  certificates    client certificates copy
          7  auto_configure  UNCONFIGURED -> CONFIGURING -> CONFIGURED
          8  global_settings OPENEMR_SETTING_* re-applied when configured
          9  redis           Redis-backed sessions
         10  permissions     lock down site, drop setup scripts
         11  swarm_complete  completion marker, lease release, ready marker
         12  serve           operator -> serve, otherwise conclude

        ExitCode.OK (0) / ExitCode.FATAL (1)
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, NoReturn

from openemr_ops.core.clock import Clock, SystemClock
from openemr_ops.core.errors import (
    ErrorCategory,
    OpsError,
    RoleViolationError,
)
from openemr_ops.core.logging import bind_context, get_logger, log_step
from openemr_ops.core.process import CommandRunner
from openemr_ops.coordination.certificates import (
    copy_service_certificates,
    normalize_certificate_modes,
    provision_ssl,
    restore_swarm_pieces,
)
from openemr_ops.coordination.election import LeaderElection
from openemr_ops.coordination.installer import (
    AutoConfigurator,
    GlobalSettingsApplier,
    InstallationCheck,
    cleanup_setup_scripts,
    finalize_permissions,
    secure_template_cache,
)
from openemr_ops.coordination.lease import LeaderLease
from openemr_ops.coordination.markers import COMPLETED_MARKER, FileMarkerStore, MarkerStore
from openemr_ops.coordination.roles import Role, compute_role
from openemr_ops.coordination.services import (
    Connector,
    configure_redis_sessions,
    tcp_connect,
    wait_for_database,
)
from openemr_ops.coordination.settings import CoordinatorSettings
from openemr_ops.coordination.upgrade import UpgradeRunner
from openemr_ops.coordination.versions import VersionMarkers

logger = get_logger(__name__)


class ExitCode(IntEnum):
    OK = 0
    FATAL = 1


class InstallState(str, Enum):
    UNCONFIGURED = "unconfigured"
    CONFIGURING = "configuring"
    CONFIGURED = "configured"


class UpgradeState(str, Enum):
    UP_TO_DATE = "up_to_date"
    UPGRADING = "upgrading"


_INSTALL_TRANSITIONS: dict[InstallState, frozenset[InstallState]] = {
    InstallState.UNCONFIGURED: frozenset({InstallState.CONFIGURING}),
    InstallState.CONFIGURING: frozenset({InstallState.CONFIGURED, InstallState.UNCONFIGURED}),
    InstallState.CONFIGURED: frozenset(),
}


class SetupStateMachine:
    """Install and upgrade states. Only a process with authority moves them."""

    def __init__(self, role: Role, configured: bool) -> None:
        self.role = role
        self.install_state = InstallState.CONFIGURED if configured else InstallState.UNCONFIGURED
        self.upgrade_state = UpgradeState.UP_TO_DATE

    def _require_authority(self, action: str) -> None:
        if not self.role.authority:
            raise RoleViolationError(
                f"Process without authority attempted to {action}"
            ).with_context(role=self.role.describe())

    def _move_install(self, target: InstallState) -> None:
        self._require_authority(f"move installation to {target.value}")
        if target not in _INSTALL_TRANSITIONS[self.install_state]:
            raise OpsError(
                f"Invalid install transition {self.install_state.value} -> {target.value}",
                category=ErrorCategory.INTERNAL,
            )
        logger.debug("install_state", old=self.install_state.value, new=target.value)
        self.install_state = target

    def begin_install(self) -> None:
        self._move_install(InstallState.CONFIGURING)

    def finish_install(self) -> None:
        self._move_install(InstallState.CONFIGURED)

    def abort_install(self) -> None:
        self._move_install(InstallState.UNCONFIGURED)

    def begin_upgrade(self) -> None:
        self._require_authority("upgrade")
        if self.install_state is not InstallState.CONFIGURED:
            raise OpsError(
                "Cannot upgrade an installation that is not configured",
                category=ErrorCategory.INTERNAL,
            )
        if self.upgrade_state is UpgradeState.UPGRADING:
            raise OpsError("Upgrade already in progress", category=ErrorCategory.INTERNAL)
        self.upgrade_state = UpgradeState.UPGRADING

    def finish_upgrade(self) -> None:
        self._require_authority("finish an upgrade")
        self.upgrade_state = UpgradeState.UP_TO_DATE


@dataclass
class CoordinatorReport:
    """What one boot decided and did."""

    role: Role
    exit_code: ExitCode
    serve: bool = False
    install_state: InstallState = InstallState.UNCONFIGURED
    upgrade_state: UpgradeState = UpgradeState.UP_TO_DATE
    upgraded_steps: list[int] = field(default_factory=list)
    promoted: bool = False
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "authority": self.role.authority,
            "operator": self.role.operator,
            "exit_code": int(self.exit_code),
            "serve": self.serve,
            "install_state": self.install_state.value,
            "upgrade_state": self.upgrade_state.value,
            "upgraded_steps": list(self.upgraded_steps),
            "promoted": self.promoted,
            "message": self.message,
        }


def build_election(
    settings: CoordinatorSettings,
    store: MarkerStore | None = None,
    clock: Clock | None = None,
) -> LeaderElection:
    clock = clock or SystemClock()
    store = store or FileMarkerStore(settings.sites_dir)
    lease = LeaderLease(store, holder=settings.instance_id, timeout=settings.leader_timeout, clock=clock)
    return LeaderElection(
        store,
        lease,
        clock=clock,
        poll_interval=settings.leader_poll_interval,
        max_wait=settings.leader_wait_timeout,
    )


class StartupCoordinator:
    """Runs the boot sequence for one container."""

    def __init__(
        self,
        settings: CoordinatorSettings,
        *,
        store: MarkerStore | None = None,
        runner: CommandRunner | None = None,
        clock: Clock | None = None,
        installation: InstallationCheck | None = None,
        redis_connect: Connector = tcp_connect,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.settings = settings
        self.clock = clock or SystemClock()
        self.store = store or FileMarkerStore(settings.sites_dir)
        self.runner = runner or CommandRunner(settings.secrets())
        self.installation = installation or InstallationCheck(settings.sqlconf_path)
        self.versions = VersionMarkers.from_settings(settings)
        self.redis_connect = redis_connect
        self.environ = environ
        self.election: LeaderElection | None = None
        self.role = Role()
        self.promoted = False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def heartbeat(self) -> None:
        if self.role.authority and self.election is not None:
            self.election.heartbeat()

    def _set_role(self, role: Role) -> None:
        self.role = role
        bind_context(authority=role.authority, operator=role.operator)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def coordinate_swarm(self) -> None:
        self.election = build_election(self.settings, self.store, self.clock)
        leader = self.election.try_become_leader()
        self._set_role(self.role.with_authority(leader))

        if not leader and not self.election.completed:
            outcome = self.election.wait_for_completion(self.installation.is_configured)
            self.promoted = outcome.promoted
            self._set_role(self.role.with_authority(outcome.authority))

        if self.role.authority:
            self.election.mark_in_progress()
            self.heartbeat()
            restore_swarm_pieces(
                self.settings.swarm_pieces_dir, self.settings.ssl_dir, self.settings.oe_root
            )

    def check_upgrade(self, state: SetupStateMachine) -> list[int]:
        snapshot = self.versions.snapshot()
        if not snapshot.needs_upgrade:
            return []
        if state.install_state is not InstallState.CONFIGURED:
            logger.info("upgrade_deferred", reason="not configured", target=snapshot.target)
            return []
        self.heartbeat()
        wait_for_database(self.settings, self.runner, self.clock, heartbeat=self.heartbeat)
        self.heartbeat()
        state.begin_upgrade()
        steps = UpgradeRunner(
            self.versions, self.settings.upgrade_script_dir, self.runner, heartbeat=self.heartbeat
        ).run(snapshot)
        state.finish_upgrade()
        return steps

    def check_configuration(self, configured: bool) -> None:
        if self.role.authority or configured:
            return
        logger.error(
            "worker_missing_configuration",
            message="Critical failure! An OpenEMR worker is trying to run on a missing configuration",
            hint="Is this due to a Kubernetes grant hiccup?",
            sqlconf=str(self.installation.sqlconf_path),
        )
        raise RoleViolationError(
            "A worker is trying to run on a missing configuration"
        ).with_context(sqlconf=str(self.installation.sqlconf_path))

    def copy_certificates(self) -> None:
        try:
            copy_service_certificates(self.settings.certs_source_dir, self.settings.certificate_dir)
        except OSError as exc:
            logger.warning("certificate_copy_failed", error=str(exc))

    def auto_configure(self, state: SetupStateMachine) -> None:
        state.begin_install()
        try:
            AutoConfigurator(self.settings, self.runner, self.installation).install(
                clock=self.clock, heartbeat=self.heartbeat
            )
        except OpsError:
            state.abort_install()
            raise
        state.finish_install()
        GlobalSettingsApplier(self.settings, self.runner, self.environ).apply()

        if self.settings.image_version_file.is_file():
            installed = self.versions.snapshot().target
            self.versions.write_data(installed)
            self.versions.write_code(installed)

    def finalize(self, configured: bool) -> None:
        s = self.settings
        if (self.role.authority or s.swarm_mode) and configured and not s.manual_setup:
            if s.installer_script.is_file():
                finalize_permissions(s.oe_root)
                cleanup_setup_scripts(s.oe_root)
        if not s.swarm_mode or not self.store.exists(COMPLETED_MARKER):
            normalize_certificate_modes(s.certificate_dir)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self) -> CoordinatorReport:
        """Run the whole boot sequence.

        Errors raised by a stage, including filesystem errors, are logged as
        ``coordinator_failed`` and reported with ``ExitCode.FATAL``.
        """
        bind_context(instance=self.settings.instance_id)
        state: SetupStateMachine | None = None
        upgraded: list[int] = []
        try:
            self._set_role(compute_role(self.settings.k8s))
            logger.info("role_computed", role=self.role.describe())

            if self.settings.swarm_mode:
                with log_step("swarm_mode"):
                    self.coordinate_swarm()
            self.heartbeat()

            configured = self.installation.is_configured()
            state = SetupStateMachine(self.role, configured)

            if self.role.authority:
                with log_step("upgrade_check") as metrics:
                    upgraded = self.check_upgrade(state)
                    metrics["steps"] = upgraded
                self.heartbeat()

            self.check_configuration(configured)

            with log_step("ssl"):
                provision_ssl(self.settings, self.runner, self.role.authority)
            with log_step("certificates"):
                self.copy_certificates()
            self.heartbeat()

            s = self.settings
            if (
                self.role.authority
                and not configured
                and s.mysql_host
                and s.mysql_root_pass
                and not s.manual_setup
            ):
                with log_step("auto_configure"):
                    self.auto_configure(state)
                configured = True
            elif self.role.authority and configured and not s.manual_setup:
                with log_step("global_settings"):
                    GlobalSettingsApplier(s, self.runner, self.environ).apply()
            self.heartbeat()

            if s.redis_server:
                with log_step("redis"):
                    configure_redis_sessions(s, self.clock, self.redis_connect)

            with log_step("permissions"):
                self.finalize(configured)

            if s.swarm_mode:
                if self.role.authority and self.election is not None:
                    self.election.mark_completed()
                s.instance_ready_file.parent.mkdir(parents=True, exist_ok=True)
                s.instance_ready_file.touch()
                logger.info("swarm_instance_ready")

            if self.role.operator:
                for site in sorted(s.sites_dir.glob("*")):
                    secure_template_cache(site)
            else:
                logger.info("configuration_tasks_concluded")

            return CoordinatorReport(
                role=self.role,
                exit_code=ExitCode.OK,
                serve=self.role.operator,
                install_state=state.install_state,
                upgrade_state=state.upgrade_state,
                upgraded_steps=upgraded,
                promoted=self.promoted,
            )
        except (OpsError, OSError) as exc:
            error = exc
            if isinstance(exc, OSError):
                error = OpsError(
                    f"Filesystem operation failed: {exc}",
                    category=ErrorCategory.STORAGE,
                    cause=exc,
                ).with_context(path=exc.filename)
            logger.error("coordinator_failed", **error.to_dict())
            return CoordinatorReport(
                role=self.role,
                exit_code=ExitCode.FATAL,
                install_state=state.install_state if state else InstallState.UNCONFIGURED,
                upgrade_state=state.upgrade_state if state else UpgradeState.UP_TO_DATE,
                upgraded_steps=upgraded,
                promoted=self.promoted,
                message=error.message,
            )


def launch_server(
    settings: CoordinatorSettings,
    *,
    clock: Clock | None = None,
    spawn: Callable[[Sequence[str]], subprocess.Popen] = subprocess.Popen,
    execvp: Callable[[str, list[str]], Any] = os.execvp,
) -> NoReturn:
    """Start the optional sidecar, then replace this process with the server.

    Raises:
        OpsError: the sidecar died during start-up.
    """
    clock = clock or SystemClock()
    if settings.sidecar_argv:
        logger.info("starting_sidecar", argv=settings.sidecar_argv)
        sidecar = spawn(settings.sidecar_argv)
        clock.sleep(2)
        if sidecar.poll() is not None:
            raise OpsError(
                "Sidecar process failed to start",
                category=ErrorCategory.EXTERNAL,
                context={"argv": settings.sidecar_argv, "returncode": sidecar.returncode},
            )

    argv = settings.serve_argv
    if not argv:
        raise OpsError("No serve command configured", category=ErrorCategory.CONFIG)
    logger.info("starting_server", argv=argv)
    execvp(argv[0], argv)
    raise OpsError("exec returned unexpectedly", category=ErrorCategory.INTERNAL)
