"""Example of embedding the sync engine in an application.

This example keeps a task list in memory, lets AutoSync write it to the
vault in the background and also exposes the vault-sync tools over MCP.
Settings go to a throwaway VAULT_SYNC_HOME unless one is set.
Run with: uv run python examples/example_server.py /path/to/vault
"""

import logging
import os
import sys
import tempfile

from fastmcp import FastMCP

from vault_sync.codec import DataType, Priority, Record
from vault_sync.config import Config
from vault_sync.main import create_engine
from vault_sync.sync import AutoSync
from vault_sync.tools import register_tools

logging.basicConfig(level=logging.INFO)

os.environ.setdefault("VAULT_SYNC_HOME", tempfile.mkdtemp(prefix="vault-sync-example-"))

config = Config.from_env()
engine = create_engine(config)

# Create MCP server
mcp = FastMCP("vault-sync-example")
register_tools(mcp, engine, config)

# In-memory task list owned by this application
task_list = [
    Record(text="Try vault-sync", priority=Priority.HIGH, tags=["demo"]),
]


@mcp.tool()
def add_task(text: str) -> dict:
    """Add a task to the in-memory list; AutoSync writes it to the vault.

    Args:
        text: Task description

    Returns:
        The new task
    """
    record = Record(text=text)
    task_list.append(record)
    auto_sync.update_snapshot(task_list)
    return record.to_dict()


auto_sync = AutoSync(engine, DataType.TASK, interval=5)


if __name__ == "__main__":
    if len(sys.argv) > 1:
        engine.store.update("vault.enabled", True)
        engine.store.update("vault.path", sys.argv[1])
    engine.store.update("sync.auto_save", True)

    current = engine.read(DataType.TASK)
    if current.records:
        task_list[:] = current.records
    auto_sync.update_snapshot(task_list)

    print("Starting vault-sync example server...")
    print(f"\nSettings: {config.override_config}")
    print(f"Vault: {engine.vault_root or '(not set, pass a path)'}")
    print(f"Task file: {engine.resolve_path(DataType.TASK)}")
    print("\nAvailable tools:")
    print("  - add_task")
    print("  - read_records / sync_records / ensure_file / append_to_section")
    print("  - update_service_key / create_note")
    print("  - resolve_path / get_config / update_config / engine_status")
    print("\nPress Ctrl+C to stop")

    engine.store.start_watching(config.watch_interval)
    auto_sync.start()
    try:
        mcp.run()
    finally:
        auto_sync.stop()
        engine.close()
        engine.store.close()
