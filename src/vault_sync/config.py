"""Bootstrap configuration for vault-sync.

Loads process-level settings from environment variables with sensible
defaults. User settings (vault path, templates, sync interval) live in the
layered YAML store, whose file locations are decided here.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from vault_sync.store import DEFAULT_WATCH_INTERVAL, LayeredConfigStore

# Base document shipped with the package
PACKAGED_BASE_CONFIG = Path(__file__).parent / "config.yaml"


@dataclass
class Config:
    """Application configuration."""

    home: Path
    base_config: Path
    override_config: Path
    port: int
    watch_interval: float
    host: str | None
    read_only: bool

    @classmethod
    def from_env(cls, read_only_override: bool | None = None) -> "Config":
        """Load configuration from environment variables.

        Args:
            read_only_override: If provided, overrides the VAULT_SYNC_READ_ONLY env var.
        """
        default_home = str(Path.home() / ".vault-sync")
        home = Path(os.getenv("VAULT_SYNC_HOME", default_home)).expanduser()

        base_config = Path(
            os.getenv("VAULT_SYNC_BASE_CONFIG", str(PACKAGED_BASE_CONFIG))
        ).expanduser()

        default_override = str(home / "config.yaml")
        override_config = Path(
            os.getenv("VAULT_SYNC_OVERRIDE_CONFIG", default_override)
        ).expanduser()

        port_str = os.getenv("VAULT_SYNC_PORT", "8090")
        try:
            port = int(port_str)
            if not 1 <= port <= 65535:
                raise ValueError(f"Port must be between 1 and 65535, got {port}")
        except ValueError as e:
            raise ValueError(f"Invalid VAULT_SYNC_PORT value '{port_str}': {e}") from e

        interval_str = os.getenv("VAULT_SYNC_WATCH_INTERVAL", str(DEFAULT_WATCH_INTERVAL))
        try:
            watch_interval = float(interval_str)
            if watch_interval <= 0:
                raise ValueError(f"Interval must be positive, got {watch_interval}")
        except ValueError as e:
            raise ValueError(
                f"Invalid VAULT_SYNC_WATCH_INTERVAL value '{interval_str}': {e}"
            ) from e

        # Empty means "use this machine's hostname"
        host = os.getenv("VAULT_SYNC_HOST") or None

        # CLI flag takes precedence over env var
        if read_only_override is not None:
            read_only = read_only_override
        else:
            read_only = os.getenv("VAULT_SYNC_READ_ONLY", "").lower() in ("1", "true", "yes")

        return cls(
            home=home,
            base_config=base_config,
            override_config=override_config,
            port=port,
            watch_interval=watch_interval,
            host=host,
            read_only=read_only,
        )

    def create_store(self) -> LayeredConfigStore:
        """Build the layered store for these file locations."""
        return LayeredConfigStore(self.base_config, self.override_config)
