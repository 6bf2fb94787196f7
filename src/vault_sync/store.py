"""Layered configuration store.

A read-only base YAML document ships with the application; a user-writable
override YAML document sits in the user's data directory. Lookups go
override, then base, then hard-coded defaults. Updates only ever touch the
override document.

A daemon thread polls both files and reloads when their content hash
changes, so a hand edit of the override (say, a new vault path) reaches every
subscriber without a restart.
"""

import copy
import hashlib
import logging
import socket
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

from vault_sync.filesystem import atomic_write_text

logger = logging.getLogger(__name__)

DEFAULTS: dict[str, Any] = {
    "vault": {
        "enabled": False,
        "path": "",
    },
    "content_files": {
        "mode": "auto",
        "template": "{year}-W{week}.md",
        "manual_file": "",
    },
    "sync": {
        "auto_save": False,
        "interval": 200,
        "sections": {
            "task": "# TODO List",
            "calendar_event": "## Calendar",
            "focus_session": "## Pomodoro",
            "service_key": "# API Keys",
            "project_entry": "# Projects",
        },
    },
    "notes": {
        "folder": "TodoNotes",
    },
    "computer": {},
}

# Seconds between checks of the config files for external edits
DEFAULT_WATCH_INTERVAL = 1.0

Listener = Callable[[Any], None]


def host_key() -> str:
    """Short lower-case hostname used to scope per-machine settings."""
    return socket.gethostname().split(".")[0].lower()


def deep_merge(base: dict, overrides: dict) -> dict:
    """Merge ``overrides`` into a copy of ``base``.

    Nested mappings merge key by key; any other value (lists included)
    replaces the base value.
    """
    result = copy.deepcopy(base)
    for key, value in overrides.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _split(key_path: str) -> list[str]:
    return [part for part in key_path.split(".") if part]


def lookup(document: dict, key_path: str) -> tuple[bool, Any]:
    """Find a dotted key path in a nested mapping. Returns (found, value)."""
    node: Any = document
    for part in _split(key_path):
        if not isinstance(node, dict) or part not in node:
            return False, None
        node = node[part]
    return True, node


def assign(document: dict, key_path: str, value: Any) -> None:
    """Set a dotted key path, creating (or replacing) intermediate mappings."""
    parts = _split(key_path)
    if not parts:
        raise ValueError("Key path must not be empty")
    node = document
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def _hash_file(path: Path) -> str | None:
    try:
        return hashlib.sha256(path.read_bytes()).hexdigest()
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning("Cannot read %s: %s", path, e)
        return None


class LayeredConfigStore:
    """Base + override configuration with subscriptions and hot reload.

    Thread Safety:
        All reads and writes of the documents happen under one lock.
        Listeners are called outside the lock, on the thread that triggered
        the change (the caller of ``update``/``reload`` or the watch thread).
    """

    def __init__(
        self,
        base_path: Path,
        override_path: Path,
        defaults: dict[str, Any] | None = None,
    ):
        """Initialize the store and load both documents.

        Args:
            base_path: Read-only base YAML document.
            override_path: User-writable override YAML document.
            defaults: Hard-coded fallback values (``DEFAULTS`` if omitted).
        """
        self.base_path = Path(base_path)
        self.override_path = Path(override_path)
        self._defaults = copy.deepcopy(DEFAULTS if defaults is None else defaults)

        self._lock = threading.RLock()
        self._base: dict[str, Any] = {}
        self._override: dict[str, Any] = {}
        self._merged: dict[str, Any] = copy.deepcopy(self._defaults)
        self._seen_hashes: dict[Path, str | None] = {}
        self._listeners: dict[str, list[Listener]] = {}

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        self._load()

    # Loading

    def _read_document(self, path: Path) -> dict[str, Any] | None:
        """Parse a YAML document.

        Missing or empty files are an empty mapping. Returns None when the
        file is invalid so the caller can keep the last good version.
        """
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            logger.error("Failed to read config file %s: %s", path, e)
            return None

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            logger.error("Invalid YAML in config file %s: %s", path, e)
            return None

        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.error("Config file %s must contain a mapping, got %s", path, type(data).__name__)
            return None
        return data

    def _load(self) -> None:
        with self._lock:
            if not self.base_path.exists():
                logger.warning(
                    "Base config not found at %s, using internal defaults", self.base_path
                )
            base = self._read_document(self.base_path)
            if base is not None:
                self._base = base
            override = self._read_document(self.override_path)
            if override is not None:
                self._override = override

            self._seen_hashes[self.base_path] = _hash_file(self.base_path)
            self._seen_hashes[self.override_path] = _hash_file(self.override_path)
            self._merged = deep_merge(deep_merge(self._defaults, self._base), self._override)

        logger.info(
            "Config loaded (base: %s, override: %s)",
            self.base_path,
            "present" if self.override_path.exists() else "absent",
        )

    def reload(self) -> None:
        """Re-read both documents, re-merge and notify every subscriber."""
        self._load()
        self._emit()

    def ensure_override(self) -> None:
        """Create an empty override document if there is none yet."""
        with self._lock:
            if self.override_path.exists():
                return
            self.override_path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_text(self.override_path, "")
            self._seen_hashes[self.override_path] = _hash_file(self.override_path)
        logger.info("Created empty override config at %s", self.override_path)

    # Reading

    def get(self, key_path: str, default: Any = None) -> Any:
        """Merged value at a dotted key path, or ``default``.

        Returns a copy; mutating it does not change the store.
        """
        with self._lock:
            if not _split(key_path):
                return copy.deepcopy(self._merged)
            found, value = lookup(self._merged, key_path)
        return copy.deepcopy(value) if found else default

    def get_override(self, key_path: str) -> tuple[bool, Any]:
        """Look a key up in the override document only."""
        with self._lock:
            found, value = lookup(self._override, key_path)
            return found, copy.deepcopy(value)

    # Writing

    def update(self, key_path: str, value: Any) -> bool:
        """Set a value in the override document, persist it and notify.

        Returns:
            True if the override file was written, False if writing failed
            (in-memory state is left unchanged in that case).
        """
        with self._lock:
            candidate = copy.deepcopy(self._override)
            assign(candidate, key_path, copy.deepcopy(value))
            text = yaml.safe_dump(candidate, allow_unicode=True, sort_keys=False)
            try:
                self.override_path.parent.mkdir(parents=True, exist_ok=True)
                atomic_write_text(self.override_path, text)
            except OSError as e:
                logger.error("Failed to save override config %s: %s", self.override_path, e)
                return False

            self._override = candidate
            self._seen_hashes[self.override_path] = hashlib.sha256(
                text.encode("utf-8")
            ).hexdigest()
            self._merged = deep_merge(deep_merge(self._defaults, self._base), self._override)

        logger.info("Config updated: %s", key_path)
        self._emit()
        return True

    # Subscriptions

    def subscribe(self, key_path: str, callback: Listener) -> Callable[[], None]:
        """Call ``callback(value)`` with the merged value at ``key_path`` on every change.

        An empty key path subscribes to the whole merged view.

        Returns:
            A function that removes the subscription. Calling it twice is safe.
        """
        with self._lock:
            self._listeners.setdefault(key_path, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._listeners.get(key_path, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._listeners.pop(key_path, None)

        return unsubscribe

    def _emit(self) -> None:
        with self._lock:
            deliveries = [
                (key_path, list(callbacks), self.get(key_path))
                for key_path, callbacks in self._listeners.items()
            ]

        for key_path, callbacks, value in deliveries:
            for callback in callbacks:
                try:
                    callback(copy.deepcopy(value))
                except Exception:
                    # A broken listener must not stop the others
                    logger.exception("Error in config listener for %r", key_path)

    # Watching

    def check_for_changes(self) -> bool:
        """Reload if either file's content changed since it was last seen.

        Writes made through :meth:`update` are recognized and skipped.

        Returns:
            True if a reload happened.
        """
        changed = []
        with self._lock:
            for path in (self.base_path, self.override_path):
                current = _hash_file(path)
                if current != self._seen_hashes.get(path):
                    changed.append(path)

        if not changed:
            return False

        logger.info("Config file changed, reloading: %s", ", ".join(str(p) for p in changed))
        self.reload()
        return True

    def start_watching(self, interval: float = DEFAULT_WATCH_INTERVAL) -> None:
        """Start the background thread that polls the config files."""
        if interval <= 0:
            raise ValueError(f"Watch interval must be positive, got {interval}")

        if self._thread is not None and self._thread.is_alive():
            logger.warning("Config watcher already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._watch_loop,
            args=(interval,),
            name="vault-sync-config-watch",
            daemon=True,
        )
        self._thread.start()
        logger.info("Config watcher started (interval: %.1fs)", interval)

    def stop_watching(self) -> None:
        """Stop the watch thread. Safe to call when it is not running."""
        if self._thread is None or not self._thread.is_alive():
            self._thread = None
            return

        self._stop_event.set()
        self._thread.join(timeout=5)
        if self._thread.is_alive():
            logger.warning("Config watcher did not stop cleanly")
        else:
            logger.info("Config watcher stopped")
        self._thread = None

    def _watch_loop(self, interval: float) -> None:
        logger.debug("Config watch loop started")

        while not self._stop_event.wait(timeout=interval):
            try:
                self.check_for_changes()
            except Exception:
                logger.exception("Error while checking config files")

        logger.debug("Config watch loop stopped")

    def close(self) -> None:
        """Stop watching and drop all subscribers."""
        self.stop_watching()
        with self._lock:
            self._listeners.clear()
