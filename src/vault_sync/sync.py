"""Synchronization between in-memory records and vault documents.

- :class:`SyncChannel` owns one (data type, file) pair and serializes its
  read-modify-write cycles.
- :class:`SyncEngine` is the service callers talk to: it resolves paths,
  hands out channels and exposes the configuration.
- :class:`AutoSync` runs a daemon thread that periodically pushes the last
  snapshot a caller handed it.
"""

from __future__ import annotations

import copy
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from vault_sync.codec import (
    DataType,
    Record,
    ServiceKeyPayload,
    normalize_tree,
    parse,
    serialize,
)
from vault_sync.document import append_to_section, extract_block, layout, replace_block
from vault_sync.errors import VaultUnavailableError, VaultWriteError
from vault_sync.filesystem import VaultFileSystem
from vault_sync.notes import DEFAULT_NOTES_FOLDER, note_path, render_note
from vault_sync.store import LayeredConfigStore, host_key
from vault_sync.templates import PathResolver

logger = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    OK = "ok"
    NOT_CONFIGURED = "not_configured"
    VAULT_UNAVAILABLE = "vault_unavailable"
    WRITE_FAILED = "write_failed"
    CANCELLED = "cancelled"


class ChannelState(str, Enum):
    IDLE = "idle"
    READING = "reading"
    WRITING = "writing"
    ERROR = "error"


@dataclass
class SyncResult:
    """Outcome of a sync call."""

    status: SyncStatus
    path: str | None = None
    count: int = 0
    written: bool = False
    coalesced: bool = False
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == SyncStatus.OK


@dataclass
class ReadResult:
    """Outcome of a read call.

    ``stale`` means the records are the channel's last snapshot rather than
    fresh file contents. ``degraded`` means the managed block could not be
    parsed and was treated as empty.
    """

    status: SyncStatus
    records: list[Record] = field(default_factory=list)
    path: str | None = None
    stale: bool = False
    degraded: bool = False
    frontmatter: dict = field(default_factory=dict)
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == SyncStatus.OK


class SyncChannel:
    """Serialized access to one vault file for one data type.

    States go Idle -> Reading -> Idle and Idle -> Writing -> Idle, passing
    through Error when an operation fails. Failures are never retried.

    While an operation is in flight:
        - ``read`` returns the last snapshot instead of waiting;
        - ``sync`` stores its records as the single pending write (replacing
          any earlier pending records) and blocks until the in-flight thread
          has written them;
        - ``modify`` queues its change behind the pending records, to be
          applied to whatever the file holds once the in-flight write is done.
    """

    def __init__(
        self,
        data_type: DataType,
        path: str,
        fs: VaultFileSystem,
        section: str | None = None,
        path_lock: threading.Lock | None = None,
    ):
        self.data_type = DataType(data_type)
        self.path = path
        self.section = section or None
        self._fs = fs
        # Shared by every channel on the same file
        self._path_lock = path_lock or threading.Lock()

        self._lock = threading.Lock()
        self._state = ChannelState.IDLE
        self._snapshot: list[Record] = []
        self._pending: list[Record] | None = None
        self._pending_changes: list[Callable[[list[Record]], list[Record]]] = []
        self._pending_future: Future | None = None
        self.last_error: str | None = None

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def snapshot(self) -> list[Record]:
        """Copy of the records last read from or written to the file."""
        with self._lock:
            return copy.deepcopy(self._snapshot)

    # Reading

    def read(self) -> ReadResult:
        """Load records from the file's managed block."""
        with self._lock:
            if self._state != ChannelState.IDLE:
                logger.debug("%s busy (%s), returning snapshot", self.path, self._state.value)
                return ReadResult(
                    status=SyncStatus.OK,
                    records=copy.deepcopy(self._snapshot),
                    path=self.path,
                    stale=True,
                )
            self._state = ChannelState.READING

        try:
            return self._read()
        finally:
            self._release()

    def _read(self) -> ReadResult:
        try:
            with self._path_lock:
                raw = self._fs.read_text(self.path)
        except (VaultUnavailableError, ValueError) as e:
            self._fail(str(e))
            return ReadResult(
                status=SyncStatus.VAULT_UNAVAILABLE,
                records=self.snapshot,
                path=self.path,
                stale=True,
                message=str(e),
            )

        content = raw or ""
        degraded = False
        frontmatter: dict = {}
        try:
            doc = layout(content, self.section)
            frontmatter = doc.frontmatter
            records = parse(doc.block_text(), self.data_type)
        except Exception:
            # A malformed block reads as an empty one
            logger.exception("Could not parse managed block in %s", self.path)
            records = []
            degraded = True

        with self._lock:
            self._snapshot = copy.deepcopy(records)

        logger.info("Loaded %d %s records from %s", len(records), self.data_type.value, self.path)
        return ReadResult(
            status=SyncStatus.OK,
            records=records,
            path=self.path,
            degraded=degraded,
            frontmatter=frontmatter,
        )

    # Writing

    def sync(self, records: list[Record]) -> SyncResult:
        """Write ``records`` as the file's managed block.

        Non-managed content (front matter, prose, other sections) is kept
        verbatim. Records are copied on entry, so later changes by the caller
        do not leak into a pending write.
        """
        return self._submit(copy.deepcopy(list(records)), None)

    def modify(self, change: Callable[[list[Record]], list[Record]]) -> SyncResult:
        """Apply ``change`` to the current records and write the result.

        ``change`` receives the records in the file, read under the file lock,
        or, while a write is in flight, the records that write will leave
        behind. Use it for edits that must not clobber entries the caller has
        not seen.
        """
        return self._submit(None, change)

    def _submit(
        self,
        records: list[Record] | None,
        change: Callable[[list[Record]], list[Record]] | None,
    ) -> SyncResult:
        with self._lock:
            if self._state != ChannelState.IDLE:
                if records is not None:
                    # a full snapshot supersedes everything queued before it
                    self._pending = records
                    self._pending_changes = []
                if change is not None:
                    self._pending_changes.append(change)
                if self._pending_future is None:
                    self._pending_future = Future()
                waiter = self._pending_future
                logger.debug("%s busy, write coalesced", self.path)
            else:
                self._state = ChannelState.WRITING
                waiter = None

        if waiter is not None:
            return replace(waiter.result(), coalesced=True)

        try:
            return self._write(records, [change] if change is not None else [])
        finally:
            self._release()

    def cancel_pending(self) -> bool:
        """Drop the pending coalesced write, if any.

        Callers waiting on it get a CANCELLED result. Returns True if a write
        was dropped.
        """
        with self._lock:
            future = self._pending_future
            self._pending = None
            self._pending_changes = []
            self._pending_future = None

        if future is None:
            return False
        logger.info("Pending write to %s cancelled", self.path)
        future.set_result(SyncResult(status=SyncStatus.CANCELLED, path=self.path))
        return True

    def ensure_exists(self) -> SyncResult:
        """Create the file empty if it does not exist yet."""
        return self._edit_file(lambda raw: raw if raw is not None else "", "Created")

    def append_to_section(self, heading: str, chunk: str) -> SyncResult:
        """Append free-form Markdown at the end of a section of the file."""
        return self._edit_file(
            lambda raw: append_to_section(raw or "", heading, chunk),
            f"Appended to {heading.strip()!r} in",
        )

    def _edit_file(self, edit: Callable[[str | None], str], action: str) -> SyncResult:
        """Rewrite the file through ``edit`` under the file lock.

        The managed block is left alone, so channel state is not involved.
        """
        try:
            with self._path_lock:
                raw = self._fs.read_text(self.path)
                content = edit(raw)
                written = content != raw
                if written:
                    self._fs.write_text(self.path, content)
                    logger.info("%s %s", action, self.path)
        except (VaultUnavailableError, ValueError) as e:
            return SyncResult(status=SyncStatus.VAULT_UNAVAILABLE, path=self.path, message=str(e))
        except VaultWriteError as e:
            return SyncResult(status=SyncStatus.WRITE_FAILED, path=self.path, message=str(e))
        return SyncResult(status=SyncStatus.OK, path=self.path, written=written)

    def _write(
        self,
        records: list[Record] | None,
        changes: list[Callable[[list[Record]], list[Record]]],
    ) -> SyncResult:
        try:
            with self._path_lock:
                raw = self._fs.read_text(self.path) or ""
                if records is None:
                    records = parse(extract_block(raw, self.section), self.data_type)
                for change in changes:
                    records = change(copy.deepcopy(records))
                block = serialize(normalize_tree(records))
                content = replace_block(raw, block, self.section)
                written = content != raw
                if written:
                    self._fs.write_text(self.path, content)
        except (VaultUnavailableError, ValueError) as e:
            self._fail(str(e))
            return SyncResult(status=SyncStatus.VAULT_UNAVAILABLE, path=self.path, message=str(e))
        except VaultWriteError as e:
            self._fail(str(e))
            return SyncResult(status=SyncStatus.WRITE_FAILED, path=self.path, message=str(e))

        with self._lock:
            self._snapshot = records

        logger.info("Synced %d %s records to %s", len(records), self.data_type.value, self.path)
        return SyncResult(status=SyncStatus.OK, path=self.path, count=len(records), written=written)

    # State handling

    def _fail(self, message: str) -> None:
        with self._lock:
            self._state = ChannelState.ERROR
            self.last_error = message
        logger.error("Sync of %s failed: %s", self.path, message)

    def _release(self) -> None:
        """Return to Idle, first writing whatever was coalesced meanwhile."""
        while True:
            with self._lock:
                if self._pending_future is None:
                    self._state = ChannelState.IDLE
                    return
                records, changes = self._pending, self._pending_changes
                future = self._pending_future
                self._pending = None
                self._pending_changes = []
                self._pending_future = None
                self._state = ChannelState.WRITING

            try:
                result = self._write(records, changes)
            except Exception as e:
                future.set_exception(e)
                with self._lock:
                    self._state = ChannelState.IDLE
                # Writes queued meanwhile have no thread left to run them
                self.cancel_pending()
                raise
            future.set_result(result)


class SyncEngine:
    """Entry point for reading and syncing records.

    Construct one per process and pass it to whatever needs it.

    Vault settings are looked up per machine first
    (``computer.<host>.vault.<name>``) and then globally (``vault.<name>``).
    """

    def __init__(
        self,
        store: LayeredConfigStore,
        host: str | None = None,
        fs_factory: Callable[[Path], VaultFileSystem] = VaultFileSystem,
    ):
        self.store = store
        self.host = host or host_key()
        self.resolver = PathResolver(store)
        self._fs_factory = fs_factory

        self._lock = threading.Lock()
        self._fs: VaultFileSystem | None = None
        self._channels: dict[tuple[DataType, str], SyncChannel] = {}
        self._path_locks: dict[str, threading.Lock] = {}
        self._unsubscribe = store.subscribe("", self._on_config_change)

    # Configuration

    def vault_setting(self, name: str, default: Any = None) -> Any:
        value = self.store.get(f"computer.{self.host}.vault.{name}")
        if value is None:
            value = self.store.get(f"vault.{name}", default)
        return value

    @property
    def vault_root(self) -> Path | None:
        path = self.vault_setting("path")
        return Path(str(path)).expanduser() if path else None

    def is_enabled(self) -> bool:
        return bool(self.vault_setting("enabled", False)) and self.vault_root is not None

    def section_for(self, data_type: DataType) -> str | None:
        section = self.store.get(f"sync.sections.{DataType(data_type).value}")
        return str(section) if section else None

    def get_config(self, key_path: str, default: Any = None) -> Any:
        return self.store.get(key_path, default)

    def subscribe_config(self, key_path: str, callback: Callable[[Any], None]) -> Callable[[], None]:
        return self.store.subscribe(key_path, callback)

    def _on_config_change(self, _config: dict) -> None:
        root = self.vault_root
        with self._lock:
            if self._fs is not None and self._fs.vault_root != root:
                logger.info("Vault path changed to %s, dropping open channels", root)
                self._fs = None
                self._channels.clear()

    # Paths and channels

    def resolve_path(self, data_type: DataType, as_of: date | None = None) -> str:
        """Vault-relative path for a data type and date."""
        return self.resolver.resolve_path(DataType(data_type), as_of)

    def _path_lock(self, path: str) -> threading.Lock:
        # caller holds self._lock
        return self._path_locks.setdefault(path, threading.Lock())

    def _filesystem(self) -> VaultFileSystem:
        root = self.vault_root
        if self._fs is None or self._fs.vault_root != root:
            self._fs = self._fs_factory(root)
            self._channels.clear()
        return self._fs

    def channel(self, data_type: DataType, as_of: date | None = None) -> SyncChannel | None:
        """The channel for a data type's file on ``as_of``; None when sync is disabled."""
        if not self.is_enabled():
            return None
        data_type = DataType(data_type)
        path = self.resolve_path(data_type, as_of)
        section = self.section_for(data_type)
        with self._lock:
            fs = self._filesystem()
            key = (data_type, path)
            channel = self._channels.get(key)
            if channel is None or channel.section != (section or None):
                channel = SyncChannel(data_type, path, fs, section, self._path_lock(path))
                self._channels[key] = channel
            return channel

    # Operations

    def read(self, data_type: DataType, as_of: date | None = None) -> ReadResult:
        """Read records of ``data_type`` from the file for ``as_of`` (default today)."""
        channel = self.channel(data_type, as_of)
        if channel is None:
            logger.debug("Vault sync not configured, nothing to read")
            return ReadResult(status=SyncStatus.NOT_CONFIGURED)
        return channel.read()

    def sync(
        self, data_type: DataType, records: list[Record], as_of: date | None = None
    ) -> SyncResult:
        """Write records of ``data_type`` to the file for ``as_of`` (default today)."""
        channel = self.channel(data_type, as_of)
        if channel is None:
            logger.debug("Vault sync not configured, skipping write")
            return SyncResult(status=SyncStatus.NOT_CONFIGURED)
        return channel.sync(records)

    def ensure_file(self, data_type: DataType, as_of: date | None = None) -> SyncResult:
        """Make sure the file for a data type and date exists."""
        channel = self.channel(data_type, as_of)
        if channel is None:
            return SyncResult(status=SyncStatus.NOT_CONFIGURED)
        return channel.ensure_exists()

    def append_to_section(
        self, data_type: DataType, heading: str, chunk: str, as_of: date | None = None
    ) -> SyncResult:
        """Append Markdown to a section of the data type's file, e.g. a session log.

        Unlike :meth:`sync` this adds text and never rewrites existing lines.
        """
        channel = self.channel(data_type, as_of)
        if channel is None:
            logger.debug("Vault sync not configured, skipping append")
            return SyncResult(status=SyncStatus.NOT_CONFIGURED)
        return channel.append_to_section(heading, chunk)

    def read_service_keys(self, as_of: date | None = None) -> dict[str, str]:
        """Map of service name to API key for every enabled service key entry."""
        result = self.read(DataType.SERVICE_KEY, as_of)
        keys: dict[str, str] = {}
        for record in result.records:
            payload = record.payload
            if payload.enabled and payload.key:
                keys.setdefault(payload.service or record.text, payload.key)
        return keys

    def update_service_key(
        self, service: str, key: str | None, as_of: date | None = None
    ) -> SyncResult:
        """Set one service's API key, leaving every other entry as it is.

        The entry is matched on its ``service`` field (or its text when that
        is empty). A missing entry is appended, an empty ``key`` removes the
        entry, and duplicate entries for the service are dropped.

        Raises:
            ValueError: If ``service`` is empty.
        """
        service = service.strip()
        if not service:
            raise ValueError("Service name must not be empty")
        key = (key or "").strip() or None

        def upsert(records: list[Record]) -> list[Record]:
            kept: list[Record] = []
            found = False
            for record in records:
                if (record.payload.service or record.text) != service:
                    kept.append(record)
                    continue
                if found or key is None:
                    continue
                record.payload.key = key
                record.touch()
                kept.append(record)
                found = True
            if key is not None and not found:
                kept.append(
                    Record(
                        text=service,
                        data_type=DataType.SERVICE_KEY,
                        payload=ServiceKeyPayload(service=service, key=key),
                    )
                )
            return kept

        channel = self.channel(DataType.SERVICE_KEY, as_of)
        if channel is None:
            logger.debug("Vault sync not configured, cannot update service key")
            return SyncResult(status=SyncStatus.NOT_CONFIGURED)
        result = channel.modify(upsert)
        if result.ok:
            logger.info("Service key %s %s", service, "updated" if key else "removed")
        return result

    def create_note(
        self,
        record: Record,
        folder: str | None = None,
        source_path: str | None = None,
        now: datetime | None = None,
    ) -> SyncResult:
        """Create a standalone note for ``record`` and return its path.

        The file name is derived from the creation time and the record text;
        a numeric suffix is added until the name is free. Existing files are
        never overwritten.
        """
        if not self.is_enabled():
            return SyncResult(status=SyncStatus.NOT_CONFIGURED)

        created = now or datetime.now()
        if folder is None:
            folder = self.store.get("notes.folder", DEFAULT_NOTES_FOLDER)
        content = render_note(record, created, source_path)

        counter = 0
        try:
            while True:
                path = note_path(folder, record.text, created, counter)
                with self._lock:
                    fs = self._filesystem()
                    path_lock = self._path_lock(path)
                with path_lock:
                    if fs.read_text(path) is None:
                        fs.write_text(path, content)
                        break
                counter += 1
        except (VaultUnavailableError, ValueError) as e:
            return SyncResult(status=SyncStatus.VAULT_UNAVAILABLE, message=str(e))
        except VaultWriteError as e:
            return SyncResult(status=SyncStatus.WRITE_FAILED, path=path, message=str(e))

        logger.info("Created note %s for record %s", path, record.id)
        return SyncResult(status=SyncStatus.OK, path=path, count=1, written=True)

    def cancel_pending(self, data_type: DataType, as_of: date | None = None) -> bool:
        """Drop a coalesced write that has not been applied yet."""
        channel = self.channel(data_type, as_of)
        return channel.cancel_pending() if channel is not None else False

    def status(self) -> dict:
        """Summary of configuration and open channels."""
        with self._lock:
            channels = [
                {
                    "data_type": data_type.value,
                    "path": path,
                    "state": channel.state.value,
                    "last_error": channel.last_error,
                }
                for (data_type, path), channel in self._channels.items()
            ]
        root = self.vault_root
        return {
            "enabled": self.is_enabled(),
            "host": self.host,
            "vault_path": str(root) if root else None,
            "channels": channels,
        }

    def close(self) -> None:
        """Stop listening to config changes and forget open channels."""
        self._unsubscribe()
        with self._lock:
            self._channels.clear()


class AutoSync:
    """Periodically syncs the last snapshot a caller provided.

    The caller owns the instance: it must call :meth:`stop` when it goes
    away. Ticks do nothing until :meth:`update_snapshot` has been called, or
    while ``sync.auto_save`` is off. The interval comes from
    ``sync.interval`` (seconds) unless given explicitly, and follows config
    changes.
    """

    def __init__(
        self,
        engine: SyncEngine,
        data_type: DataType,
        interval: float | None = None,
    ):
        self._engine = engine
        self._data_type = DataType(data_type)
        self._fixed_interval = interval is not None
        self._interval = float(interval if interval is not None else self._configured_interval())
        if self._interval <= 0:
            raise ValueError(f"Sync interval must be positive, got {self._interval}")

        self._snapshot: list[Record] | None = None
        self._snapshot_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def interval(self) -> float:
        return self._interval

    def _configured_interval(self) -> float:
        return float(self._engine.get_config("sync.interval", 200))

    def _on_sync_settings(self, settings: Any) -> None:
        if self._fixed_interval or not isinstance(settings, dict):
            return
        try:
            interval = float(settings.get("interval", self._interval))
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid sync interval %r", settings.get("interval"))
            return
        if interval > 0 and interval != self._interval:
            logger.info("Auto-sync interval changed to %.1fs", interval)
            self._interval = interval

    def update_snapshot(self, records: list[Record]) -> None:
        """Hand over the records the next tick should write."""
        with self._snapshot_lock:
            self._snapshot = copy.deepcopy(list(records))

    def sync_now(self) -> SyncResult | None:
        """Sync the snapshot immediately. Returns None when there is nothing to do."""
        if not self._engine.get_config("sync.auto_save", False):
            return None
        with self._snapshot_lock:
            snapshot = self._snapshot
        if snapshot is None:
            return None
        return self._engine.sync(self._data_type, snapshot)

    def start(self) -> None:
        """Start the background sync thread."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Auto-sync thread already running")
            return

        if self._unsubscribe is None:
            self._unsubscribe = self._engine.subscribe_config("sync", self._on_sync_settings)

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._sync_loop,
            name=f"vault-sync-{self._data_type.value}",
            daemon=True,
        )
        self._thread.start()
        logger.info("Auto-sync started for %s (interval: %.1fs)", self._data_type.value, self._interval)

    def stop(self) -> None:
        """Stop the background sync thread.

        Blocks until the thread terminates. A write already in flight runs
        to completion.
        """
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        if self._thread is None or not self._thread.is_alive():
            self._thread = None
            return

        self._stop_event.set()
        self._thread.join(timeout=self._interval + 1)
        if self._thread.is_alive():
            logger.warning("Auto-sync thread did not stop cleanly")
        else:
            logger.info("Auto-sync stopped for %s", self._data_type.value)
        self._thread = None

    def _sync_loop(self) -> None:
        """Main sync loop - runs in background thread."""
        logger.debug("Auto-sync loop started")

        # Sleep first, then sync (allows immediate shutdown on start)
        while not self._stop_event.wait(timeout=self._interval):
            try:
                result = self.sync_now()
                if result is None:
                    logger.debug("Auto-sync: nothing to write")
                elif not result.ok:
                    logger.warning("Auto-sync failed: %s", result.message or result.status.value)
            except Exception:
                logger.exception("Error during auto-sync")

        logger.debug("Auto-sync loop stopped")
