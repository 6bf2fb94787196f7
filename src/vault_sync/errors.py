"""Error types for vault-sync.

The file-system errors are raised inside the engine and converted by the
public sync API to :class:`vault_sync.sync.SyncStatus` values instead of
escaping. :class:`ReadOnlyError` is raised by the MCP write tools.
"""


class VaultSyncError(Exception):
    """Base class for engine errors."""


class ReadOnlyError(VaultSyncError):
    """A write was requested while the server runs read-only."""


class VaultUnavailableError(VaultSyncError):
    """The vault root is missing or unreadable."""


class VaultWriteError(VaultSyncError):
    """Writing a vault document failed."""
