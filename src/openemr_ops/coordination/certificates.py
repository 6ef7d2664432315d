"""Webserver certificate provisioning, client certificate copy, swarm-pieces restore."""

from __future__ import annotations

import shutil
from pathlib import Path

from openemr_ops.core.errors import CertificateError, CommandError
from openemr_ops.core.logging import get_logger
from openemr_ops.core.process import CommandRunner
from openemr_ops.coordination.settings import CoordinatorSettings

logger = get_logger(__name__)

CERTIFICATE_MODE = 0o744

# (source subdirectory under the certs volume, file names)
SERVICE_CERTIFICATES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("mysql/server", ("mysql-ca", "mysql-cert", "mysql-key")),
    ("couchdb", ("couchdb-ca", "couchdb-cert", "couchdb-key")),
    ("ldap", ("ldap-ca", "ldap-cert", "ldap-key")),
    ("redis", ("redis-ca", "redis-cert", "redis-key")),
)


def provision_ssl(
    settings: CoordinatorSettings,
    runner: CommandRunner,
    authority: bool,
) -> bool:
    """Run the certificate command when needed.

    The command runs when this process has authority or the webserver
    certificate or key is missing. Returns True if it ran successfully.

    Raises:
        CertificateError: the command failed and this process has authority.
    """
    missing = not settings.webserver_cert.is_file() or not settings.webserver_key.is_file()
    if not authority and not missing:
        return False

    error: CommandError | None = None
    try:
        outcome = runner.run(settings.ssl_argv, cwd=settings.oe_root)
    except CommandError as exc:
        error = exc
    else:
        if not outcome.ok:
            error = CommandError(settings.ssl_argv, outcome.returncode, outcome.stderr)

    if error is None:
        logger.info("ssl_configured")
        return True
    if authority:
        raise CertificateError("Could not configure SSL certificates", cause=error)
    logger.warning("ssl_not_configured", reason="may be read-only", error=str(error))
    return False


def copy_service_certificates(source: Path, dest: Path) -> list[str]:
    """Copy client certificates into the site's certificate directory.

    Existing files in ``dest`` are never overwritten.
    """
    source, dest = Path(source), Path(dest)
    dest.mkdir(parents=True, exist_ok=True)
    copied: list[str] = []
    for subdir, names in SERVICE_CERTIFICATES:
        for name in names:
            src = source / subdir / name
            dst = dest / name
            if src.is_file() and not dst.exists():
                shutil.copyfile(src, dst)
                dst.chmod(CERTIFICATE_MODE)
                copied.append(name)
    if copied:
        logger.info("certificates_copied", names=copied)
    return copied


def normalize_certificate_modes(cert_dir: Path) -> None:
    """Reset service certificate files to 0744."""
    cert_dir = Path(cert_dir)
    if not cert_dir.is_dir():
        return
    prefixes = tuple(f"{subdir.split('/')[0]}-" for subdir, _ in SERVICE_CERTIFICATES)
    for path in cert_dir.iterdir():
        if path.is_file() and path.name.startswith(prefixes):
            if path.stat().st_mode & 0o777 != CERTIFICATE_MODE:
                path.chmod(CERTIFICATE_MODE)


def restore_swarm_pieces(pieces_dir: Path, ssl_dir: Path, oe_root: Path) -> list[str]:
    """Repopulate empty shared volumes from the image's pristine copies."""
    pieces_dir, ssl_dir, oe_root = Path(pieces_dir), Path(ssl_dir), Path(oe_root)
    restored: list[str] = []
    if not (ssl_dir / "openssl.cnf").is_file() and (pieces_dir / "ssl").is_dir():
        shutil.copytree(pieces_dir / "ssl", ssl_dir, symlinks=True, dirs_exist_ok=True)
        restored.append("ssl")
        logger.info("swarm_piece_restored", piece="ssl", target=str(ssl_dir))
    if not (oe_root / "sites" / "default").is_dir() and (pieces_dir / "sites").is_dir():
        shutil.copytree(pieces_dir / "sites", oe_root / "sites", symlinks=True, dirs_exist_ok=True)
        restored.append("sites")
        logger.info("swarm_piece_restored", piece="sites", target=str(oe_root / "sites"))
    return restored
