"""
Manifests and the backup catalog.

A manifest is an append-only text file, one backup identifier per line.
Line one is the full backup; every later line is an incremental on top of
the line before it. A manifest with N lines is a restorable chain of N
artifacts, replayed strictly in file order.

The catalog orders manifests by their parsed identifiers, never by
directory listing order, and names the newest one the current chain.
"""

from __future__ import annotations

from pathlib import Path

from openemr_ops.core.errors import ManifestError
from openemr_ops.backup.identifiers import MANIFEST_SUFFIX, BackupId


class Manifest:
    """One backup chain."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    @property
    def backup_id(self) -> BackupId:
        parsed = BackupId.from_name(self.path.name)
        if parsed is None or self.path.name != f"{parsed}{MANIFEST_SUFFIX}":
            raise ManifestError(f"Not a manifest file name: {self.path.name}")
        return parsed

    @property
    def name(self) -> str:
        return self.path.name

    def exists(self) -> bool:
        return self.path.is_file()

    def entries(self) -> list[BackupId]:
        """Identifiers in chain order. Blank lines are ignored.

        Raises
        ------
        ManifestError
            The file cannot be read or a line is not an identifier.
        """
        try:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            raise ManifestError(
                f"Cannot read manifest {self.path.name}", cause=exc
            ).with_context(path=str(self.path)) from exc

        entries: list[BackupId] = []
        for lineno, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                entries.append(BackupId.parse(line))
            except ValueError as exc:
                raise ManifestError(
                    f"Malformed line {lineno} in manifest {self.path.name}", cause=exc
                ).with_context(path=str(self.path), line=line[:64]) from exc
        return entries

    @property
    def full(self) -> BackupId | None:
        entries = self.entries()
        return entries[0] if entries else None

    @property
    def anchor(self) -> BackupId | None:
        """Most recent backup in the chain (base of the next incremental)."""
        entries = self.entries()
        return entries[-1] if entries else None

    def __len__(self) -> int:
        return len(self.entries())

    def create(self, first: BackupId) -> None:
        """Start a new chain with its full backup."""
        try:
            with self.path.open("x", encoding="utf-8") as handle:
                handle.write(f"{first}\n")
        except FileExistsError as exc:
            raise ManifestError(f"Manifest {self.path.name} already exists", cause=exc) from exc

    def append(self, backup_id: BackupId) -> None:
        """Extend the chain with an incremental.

        The new identifier must be newer than the current anchor.
        """
        anchor = self.anchor
        if anchor is None:
            raise ManifestError(f"Cannot append to empty manifest {self.path.name}")
        if backup_id <= anchor:
            raise ManifestError(
                f"Identifier {backup_id} is not newer than chain anchor {anchor}"
            ).with_context(path=str(self.path))
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(f"{backup_id}\n")

    def __repr__(self) -> str:
        return f"Manifest({self.path.name!r})"


class BackupCatalog:
    """Read-only view of a backup target directory."""

    def __init__(self, target_dir: Path) -> None:
        self.target_dir = Path(target_dir)

    def manifests(self) -> list[Manifest]:
        """Manifests, oldest first."""
        found: list[tuple[BackupId, Manifest]] = []
        if not self.target_dir.is_dir():
            return []
        for path in self.target_dir.iterdir():
            if not path.is_file() or not path.name.endswith(MANIFEST_SUFFIX):
                continue
            backup_id = BackupId.from_name(path.name)
            if backup_id is None or path.name != f"{backup_id}{MANIFEST_SUFFIX}":
                continue
            found.append((backup_id, Manifest(path)))
        found.sort(key=lambda pair: pair[0])
        return [manifest for _, manifest in found]

    def current(self) -> Manifest | None:
        """The chain currently being extended (newest manifest)."""
        manifests = self.manifests()
        return manifests[-1] if manifests else None

    def find(self, ref: str | Path) -> Manifest:
        """Resolve a manifest by path, file name or bare identifier.

        Relative references are looked up in the target directory.
        """
        path = Path(ref)
        if not path.name.endswith(MANIFEST_SUFFIX):
            path = path.with_name(path.name + MANIFEST_SUFFIX)
        if not path.is_absolute():
            path = self.target_dir / path.name
        manifest = Manifest(path)
        if not manifest.exists():
            raise ManifestError(f"Cannot locate recovery manifest {path.name}").with_context(
                path=str(path)
            )
        return manifest

    def items(self) -> list[tuple[BackupId, Path]]:
        """Every directory entry whose name starts with an identifier."""
        if not self.target_dir.is_dir():
            return []
        found = []
        for path in self.target_dir.iterdir():
            backup_id = BackupId.from_name(path.name)
            if backup_id is not None:
                found.append((backup_id, path))
        found.sort(key=lambda pair: (pair[0], pair[1].name))
        return found
