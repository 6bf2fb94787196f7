"""File access for vault documents.

The sync engine only touches the disk through :class:`VaultFileSystem`, so
tests can swap in a fake or wrap it to inject failures.
"""

import logging
import os
import tempfile
from pathlib import Path

from vault_sync.errors import VaultUnavailableError, VaultWriteError

logger = logging.getLogger(__name__)


def atomic_write_text(path: Path, content: str) -> None:
    """Write text through a temp file in the same directory, then rename.

    Raises:
        OSError: If the directory is missing or the write fails.
    """
    tmp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            dir=str(path.parent),
            prefix=".tmp_",
            delete=False,
            encoding="utf-8",
            newline="",
        ) as tmp_file:
            tmp_file.write(content)
            tmp_path = Path(tmp_file.name)
        os.replace(tmp_path, path)
        tmp_path = None
    finally:
        if tmp_path is not None and tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                logger.debug("Could not remove temp file %s", tmp_path)


class VaultFileSystem:
    """Read and write Markdown files below a vault root."""

    def __init__(self, vault_root: Path):
        self.vault_root = Path(vault_root).expanduser()

    def _resolve(self, relative_path: str) -> Path:
        """Resolve a vault-relative path, refusing anything outside the vault.

        Raises:
            ValueError: If the path escapes the vault root.
        """
        if Path(relative_path).is_absolute():
            raise ValueError(f"Path must be relative to the vault: {relative_path}")

        file_path = (self.vault_root / relative_path).resolve()
        root = self.vault_root.resolve()
        if not str(file_path).startswith(str(root) + os.sep):
            raise ValueError(f"Path outside vault: {relative_path}")
        return file_path

    def check_available(self) -> None:
        """Raise VaultUnavailableError unless the vault root is a readable directory."""
        if not self.vault_root.is_dir():
            raise VaultUnavailableError(f"Vault path does not exist: {self.vault_root}")
        if not os.access(self.vault_root, os.R_OK | os.X_OK):
            raise VaultUnavailableError(f"Vault path is not readable: {self.vault_root}")

    def read_text(self, relative_path: str) -> str | None:
        """Return file contents, or None when the file does not exist.

        Raises:
            VaultUnavailableError: If the vault root is missing or unreadable,
                or the file cannot be read.
        """
        self.check_available()
        file_path = self._resolve(relative_path)
        try:
            return file_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise VaultUnavailableError(f"Cannot read {relative_path}: {e}") from e

    def ensure_directory(self, relative_dir: str) -> None:
        """Create a directory (and parents) inside the vault."""
        self.check_available()
        dir_path = self._resolve(relative_dir) if relative_dir not in ("", ".") else self.vault_root
        try:
            dir_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise VaultWriteError(f"Cannot create directory {relative_dir}: {e}") from e

    def write_text(self, relative_path: str, content: str) -> None:
        """Atomically replace a file's contents, creating parent directories.

        Raises:
            VaultUnavailableError: If the vault root is missing.
            VaultWriteError: If the write fails.
        """
        self.check_available()
        file_path = self._resolve(relative_path)
        parent = str(Path(relative_path).parent)
        self.ensure_directory(parent)
        try:
            atomic_write_text(file_path, content)
        except OSError as e:
            raise VaultWriteError(f"Cannot write {relative_path}: {e}") from e
        logger.debug("Wrote %s (%d chars)", relative_path, len(content))
