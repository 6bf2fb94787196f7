"""Main entry point for the vault-sync MCP server."""

import argparse
import logging
import sys

from fastmcp import FastMCP

from vault_sync.config import Config
from vault_sync.sync import SyncEngine
from vault_sync.tools import register_tools

logger = logging.getLogger(__name__)


def create_engine(config: Config) -> SyncEngine:
    """Build the layered store and the sync engine for a configuration."""
    store = config.create_store()
    if not config.read_only:
        store.ensure_override()
    return SyncEngine(store, host=config.host)


def create_server(config: Config, engine: SyncEngine | None = None) -> FastMCP:
    """Create and configure the MCP server with all components.

    Args:
        config: Configuration instance with all settings.
        engine: Sync engine to expose; built from ``config`` when omitted.
    """
    if engine is None:
        engine = create_engine(config)

    mcp = FastMCP(
        name="vault-sync",
        instructions=(
            "vault-sync keeps tasks, calendar events, focus sessions, service keys and "
            "project entries as Markdown checklists inside a notes vault. Use read_records "
            "and sync_records to load and store them, and get_config/update_config to set "
            "the vault path and file name templates."
        ),
    )

    logger.info("Registering tools...")
    register_tools(mcp, engine, config)

    logger.info("Server configured successfully")
    return mcp


def main() -> None:
    """Main function - starts the MCP server."""
    # Configure logging here to avoid side effects on import
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(
        description="vault-sync - MCP server syncing structured records with a Markdown vault"
    )
    parser.add_argument(
        "--read-only",
        action="store_true",
        help="Run in read-only mode (disable write tools)",
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse"],
        default="sse",
        help="MCP transport (default: sse)",
    )
    args = parser.parse_args()

    # Create config once - CLI flag overrides env var
    config = Config.from_env(read_only_override=args.read_only if args.read_only else None)

    engine = create_engine(config)

    # Print startup banner
    logger.info("=" * 50)
    logger.info("vault-sync starting...")
    logger.info("  BASE CONFIG:     %s", config.base_config)
    logger.info("  OVERRIDE CONFIG: %s", config.override_config)
    logger.info("  HOST:            %s", engine.host)
    logger.info("  VAULT:           %s", engine.vault_root or "(not set)")
    logger.info("  SYNC:            %s", "enabled" if engine.is_enabled() else "disabled")
    logger.info("  READ_ONLY:       %s", config.read_only)
    logger.info("=" * 50)

    engine.store.start_watching(config.watch_interval)
    try:
        mcp = create_server(config, engine)
        if args.transport == "stdio":
            mcp.run(transport="stdio")
        else:
            logger.info("Starting MCP server on port %s...", config.port)
            mcp.run(transport="sse", host="0.0.0.0", port=config.port)
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        sys.exit(0)
    except Exception:
        logger.exception("Server error")
        sys.exit(1)
    finally:
        engine.close()
        engine.store.close()


if __name__ == "__main__":
    main()
