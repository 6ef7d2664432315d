"""Coordinator configuration.

Environment variable names match the ones the OpenEMR container images have
always consumed (``MYSQL_HOST``, ``K8S``, ``SWARM_MODE``, ...), so existing
compose files and Kubernetes manifests keep working unchanged.
"""

from __future__ import annotations

import os
import shlex
import socket
from collections.abc import Mapping
from pathlib import Path

from pydantic import Field

from openemr_ops.core.settings import OpsBaseSettings

GLOBAL_SETTING_PREFIX = "OPENEMR_SETTING_"


def _default_instance_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class CoordinatorSettings(OpsBaseSettings):
    """Settings for the container startup coordinator."""

    # ── Database ─────────────────────────────────────────────────
    mysql_host: str = "mysql"
    mysql_port: int = 3306
    mysql_root_user: str = "root"
    mysql_root_pass: str = "root"
    mysql_user: str = "openemr"
    mysql_pass: str = "openemr"
    mysql_database: str = "openemr"
    mysql_collation: str = "utf8mb4_general_ci"

    # ── Initial administrator ────────────────────────────────────
    oe_user: str = "admin"
    oe_user_name: str = "Administrator"
    oe_pass: str = "pass"

    # ── Orchestration ────────────────────────────────────────────
    manual_setup: bool = False
    k8s: str = Field(default="", description="Orchestration mode: '', 'admin' or 'worker'")
    swarm_mode: bool = False
    instance_id: str = Field(default_factory=_default_instance_id)
    leader_timeout: int = Field(default=300, ge=1, description="Seconds before a leader is stale")
    leader_wait_timeout: int = Field(default=600, ge=0, description="Follower maximum wait")
    leader_poll_interval: int = Field(default=10, ge=1)
    install_max_attempts: int = Field(default=30, ge=1)
    db_wait_attempts: int = Field(default=60, ge=1)

    # ── Redis sessions ───────────────────────────────────────────
    redis_server: str = ""
    redis_username: str = ""
    redis_password: str = ""
    redis_tls: bool = False
    redis_x509: bool = False

    # ── Filesystem ───────────────────────────────────────────────
    oe_root: Path = Path("/var/www/localhost/htdocs/openemr")
    image_version_file: Path = Path("/root/docker-version")
    upgrade_script_dir: Path = Path("/root")
    swarm_pieces_dir: Path = Path("/swarm-pieces")
    ssl_dir: Path = Path("/etc/ssl")
    webserver_cert: Path = Path("/etc/ssl/certs/webserver.cert.pem")
    webserver_key: Path = Path("/etc/ssl/private/webserver.key.pem")
    certs_source_dir: Path = Path("/root/certs")
    php_conf_dir: Path = Path("/usr/local/etc/php/conf.d")
    container_state_dir: Path = Field(
        default=Path("/etc"), description="Per-container (not shared) marker directory"
    )
    instance_ready_file: Path = Path("/root/instance-swarm-ready")

    # ── External commands ────────────────────────────────────────
    php_binary: str = "php"
    mysql_client: str = "mysql"
    mysqladmin_binary: str = "mysqladmin"
    ssl_command: str = "sh ssl.sh"
    serve_command: str = "/usr/sbin/httpd -D FOREGROUND"
    serve_sidecar_command: str = ""

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def root_password(self) -> str:
        """Root password with the ``BLANK`` placeholder resolved."""
        return "" if self.mysql_root_pass == "BLANK" else self.mysql_root_pass

    @property
    def sites_dir(self) -> Path:
        return self.oe_root / "sites"

    @property
    def default_site_dir(self) -> Path:
        return self.sites_dir / "default"

    @property
    def sqlconf_path(self) -> Path:
        return self.default_site_dir / "sqlconf.php"

    @property
    def installer_script(self) -> Path:
        return self.oe_root / "auto_configure.php"

    @property
    def code_version_file(self) -> Path:
        return self.oe_root / "docker-version"

    @property
    def data_version_file(self) -> Path:
        return self.default_site_dir / "docker-version"

    @property
    def certificate_dir(self) -> Path:
        return self.default_site_dir / "documents" / "certificates"

    @property
    def serve_argv(self) -> list[str]:
        return shlex.split(self.serve_command)

    @property
    def sidecar_argv(self) -> list[str]:
        return shlex.split(self.serve_sidecar_command)

    @property
    def ssl_argv(self) -> list[str]:
        return shlex.split(self.ssl_command)

    def secrets(self) -> list[str]:
        """Values that must be masked in command logs."""
        return [
            s
            for s in (self.root_password, self.mysql_pass, self.oe_pass, self.redis_password)
            if s
        ]

    @staticmethod
    def global_settings(environ: Mapping[str, str] | None = None) -> dict[str, str]:
        """Collect ``OPENEMR_SETTING_<name>`` variables as ``{name: value}``."""
        env = os.environ if environ is None else environ
        return {
            key[len(GLOBAL_SETTING_PREFIX):]: value
            for key, value in sorted(env.items())
            if key.startswith(GLOBAL_SETTING_PREFIX) and len(key) > len(GLOBAL_SETTING_PREFIX)
        }
