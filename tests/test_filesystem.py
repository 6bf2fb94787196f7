"""Tests for vault file access."""

import pytest

from vault_sync.errors import VaultUnavailableError, VaultWriteError
from vault_sync.filesystem import VaultFileSystem, atomic_write_text


@pytest.fixture
def vault(tmp_path):
    root = tmp_path / "vault"
    root.mkdir()
    return VaultFileSystem(root)


def test_read_missing_file_returns_none(vault):
    assert vault.read_text("2025-W01.md") is None


def test_write_and_read(vault):
    vault.write_text("Weekly/2025-W01.md", "# TODO List\n")
    assert vault.read_text("Weekly/2025-W01.md") == "# TODO List\n"
    assert (vault.vault_root / "Weekly" / "2025-W01.md").is_file()


def test_write_keeps_line_endings(vault):
    vault.write_text("crlf.md", "a\r\nb\r\n")
    assert (vault.vault_root / "crlf.md").read_bytes() == b"a\r\nb\r\n"


def test_write_leaves_no_temp_files(vault):
    vault.write_text("note.md", "one")
    vault.write_text("note.md", "two")
    assert sorted(p.name for p in vault.vault_root.iterdir()) == ["note.md"]


def test_missing_vault_is_unavailable(tmp_path):
    fs = VaultFileSystem(tmp_path / "missing")
    with pytest.raises(VaultUnavailableError):
        fs.read_text("a.md")
    with pytest.raises(VaultUnavailableError):
        fs.write_text("a.md", "x")


def test_path_outside_vault_rejected(vault):
    with pytest.raises(ValueError, match="outside vault"):
        vault.read_text("../escape.md")
    with pytest.raises(ValueError, match="relative"):
        vault.write_text("/etc/passwd", "x")


def test_write_failure_raises_write_error(vault):
    (vault.vault_root / "blocker").write_text("a file, not a directory")
    with pytest.raises(VaultWriteError):
        vault.write_text("blocker/note.md", "x")


def test_ensure_directory(vault):
    vault.ensure_directory("a/b")
    assert (vault.vault_root / "a" / "b").is_dir()


def test_atomic_write_replaces(tmp_path):
    target = tmp_path / "config.yaml"
    target.write_text("old")
    atomic_write_text(target, "new")
    assert target.read_text() == "new"
