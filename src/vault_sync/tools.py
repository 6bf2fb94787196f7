"""MCP tools for the vault-sync server.

This module defines the tools exposed by the MCP server:
- read_records: Read the records of a data type from its vault file
- sync_records: Replace the records of a data type in its vault file
- ensure_file: Create the vault file for a data type if it is missing
- append_to_section: Append Markdown to a section of a vault file
- update_service_key: Set or remove one service API key
- create_note: Create a standalone note linked to a record
- resolve_path: Show which vault file a data type maps to on a date
- get_config / update_config: Inspect and change layered settings
- engine_status: Configuration summary and open sync channels
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING, Any

from vault_sync.codec import DataType, Record
from vault_sync.config import Config
from vault_sync.errors import ReadOnlyError
from vault_sync.notes import wiki_target
from vault_sync.sync import SyncEngine

if TYPE_CHECKING:
    from fastmcp import FastMCP

logger = logging.getLogger(__name__)


def check_write_permission(config: Config) -> None:
    """
    Check if write operations are allowed.

    Raises:
        ReadOnlyError: If the server is in read-only mode
    """
    if config.read_only:
        logger.warning("Write operation rejected: server is in read-only mode")
        raise ReadOnlyError("Server is in read-only mode")


def parse_data_type(value: str) -> DataType:
    """Convert a tool argument to a DataType.

    Raises:
        ValueError: If the value names no data type
    """
    try:
        return DataType(value.strip().lower())
    except ValueError:
        valid = ", ".join(t.value for t in DataType)
        raise ValueError(f"Invalid data type '{value}'. Must be one of: {valid}") from None


def parse_date(value: str | None) -> date | None:
    """Convert an optional YYYY-MM-DD tool argument to a date."""
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Invalid date '{value}'. Expected YYYY-MM-DD") from None


def register_tools(mcp: FastMCP, engine: SyncEngine, config: Config) -> None:
    """Register all vault-sync tools with the FastMCP server.

    Args:
        mcp: FastMCP server instance
        engine: Sync engine shared by every tool
        config: Config instance (read-only mode)
    """

    @mcp.tool()
    def read_records(data_type: str, on_date: str | None = None) -> dict:
        """Read the records of a data type from the vault.

        Args:
            data_type: task, calendar_event, focus_session, service_key or project_entry
            on_date: Date selecting the file (YYYY-MM-DD, default: today)

        Returns:
            Dict with:
            - status: ok, not_configured or vault_unavailable
            - path: Vault-relative file path
            - stale: True if a write was in progress and the last known records were returned
            - degraded: True if the checklist could not be parsed
            - frontmatter: YAML front matter of the file
            - records: List of records (id, text, done, tags, payload, ...)
        """
        kind = parse_data_type(data_type)
        result = engine.read(kind, parse_date(on_date))
        return {
            "status": result.status.value,
            "path": result.path,
            "stale": result.stale,
            "degraded": result.degraded,
            "frontmatter": result.frontmatter,
            "records": [record.to_dict() for record in result.records],
            "message": result.message,
        }

    @mcp.tool()
    def sync_records(
        data_type: str,
        records: list[dict[str, Any]],
        on_date: str | None = None,
    ) -> dict:
        """Replace the checklist of a data type in its vault file.

        Content outside the checklist (front matter, prose, other sections)
        is preserved. Records missing from the list are deleted from the file.

        Args:
            data_type: task, calendar_event, focus_session, service_key or project_entry
            records: Records as returned by read_records; "text" is required,
                a missing "id" gets a fresh one
            on_date: Date selecting the file (YYYY-MM-DD, default: today)

        Returns:
            Dict with status, path, number of records and whether the file changed
        """
        check_write_permission(config)
        kind = parse_data_type(data_type)
        parsed = []
        for i, data in enumerate(records):
            if not str(data.get("text", "")).strip():
                raise ValueError(f"Record {i} has no text")
            parsed.append(Record.from_dict({**data, "data_type": kind.value}))

        result = engine.sync(kind, parsed, parse_date(on_date))
        return {
            "status": result.status.value,
            "path": result.path,
            "count": result.count,
            "written": result.written,
            "coalesced": result.coalesced,
            "message": result.message,
        }

    @mcp.tool()
    def ensure_file(data_type: str, on_date: str | None = None) -> dict:
        """Create the vault file of a data type if it does not exist.

        Args:
            data_type: task, calendar_event, focus_session, service_key or project_entry
            on_date: Date selecting the file (YYYY-MM-DD, default: today)

        Returns:
            Dict with status, path and whether the file was created
        """
        check_write_permission(config)
        result = engine.ensure_file(parse_data_type(data_type), parse_date(on_date))
        return {
            "status": result.status.value,
            "path": result.path,
            "created": result.written,
            "message": result.message,
        }

    @mcp.tool()
    def append_to_section(
        data_type: str, heading: str, content: str, on_date: str | None = None
    ) -> dict:
        """Append Markdown to the end of a section in a data type's vault file.

        Use it for logs that are not part of the managed checklist. Existing
        lines are never changed; a missing section is created at the end.

        Args:
            data_type: task, calendar_event, focus_session, service_key or project_entry
            heading: Section heading, e.g. "# Focus Log" (a bare title gets one #)
            content: Markdown to append
            on_date: Date selecting the file (YYYY-MM-DD, default: today)

        Returns:
            Dict with status, path and whether the file changed
        """
        check_write_permission(config)
        if not heading.strip("# "):
            raise ValueError("heading must not be empty")
        if not content.strip():
            raise ValueError("content must not be empty")

        result = engine.append_to_section(
            parse_data_type(data_type), heading, content, parse_date(on_date)
        )
        return {
            "status": result.status.value,
            "path": result.path,
            "written": result.written,
            "message": result.message,
        }

    @mcp.tool()
    def update_service_key(service: str, key: str = "", on_date: str | None = None) -> dict:
        """Set the API key of one service without touching the other entries.

        Args:
            service: Service name, e.g. "github"
            key: New key; empty removes the service's entry
            on_date: Date selecting the file (YYYY-MM-DD, default: today)

        Returns:
            Dict with status, path and number of service key entries
        """
        check_write_permission(config)
        result = engine.update_service_key(service, key, parse_date(on_date))
        return {
            "status": result.status.value,
            "path": result.path,
            "count": result.count,
            "message": result.message,
        }

    @mcp.tool()
    def create_note(
        data_type: str,
        record_id: str,
        folder: str | None = None,
        on_date: str | None = None,
    ) -> dict:
        """Create a standalone note for a record, linked back to its file.

        Args:
            data_type: task, calendar_event, focus_session, service_key or project_entry
            record_id: Id of the record (as returned by read_records)
            folder: Vault folder for the note (default: notes.folder setting)
            on_date: Date selecting the record's file (YYYY-MM-DD, default: today)

        Returns:
            Dict with status, path of the new note and its wiki link target
        """
        check_write_permission(config)
        kind = parse_data_type(data_type)
        current = engine.read(kind, parse_date(on_date))
        if not current.ok:
            return {"status": current.status.value, "path": None, "link": None}

        record = next((r for r in current.records if r.id == record_id), None)
        if record is None:
            raise ValueError(f"No {kind.value} record with id '{record_id}'")

        result = engine.create_note(record, folder=folder, source_path=current.path)
        return {
            "status": result.status.value,
            "path": result.path,
            "link": wiki_target(result.path) if result.path else None,
            "message": result.message,
        }

    @mcp.tool()
    def resolve_path(data_type: str, on_date: str | None = None) -> dict:
        """Show the vault-relative file a data type maps to.

        Args:
            data_type: task, calendar_event, focus_session, service_key or project_entry
            on_date: Date to resolve the file name template for (default: today)

        Returns:
            Dict with data_type, date and path
        """
        kind = parse_data_type(data_type)
        as_of = parse_date(on_date) or date.today()
        return {
            "data_type": kind.value,
            "date": as_of.isoformat(),
            "path": engine.resolve_path(kind, as_of),
        }

    @mcp.tool()
    def get_config(key_path: str = "") -> dict:
        """Read a setting from the layered configuration.

        Args:
            key_path: Dotted key path (e.g. "vault.path"); empty for everything

        Returns:
            Dict with key_path, value and whether the key exists
        """
        missing = object()
        value = engine.get_config(key_path, missing)
        return {
            "key_path": key_path,
            "found": value is not missing,
            "value": None if value is missing else value,
        }

    @mcp.tool()
    def update_config(key_path: str, value: Any) -> dict:
        """Change a setting in the user's override configuration.

        Args:
            key_path: Dotted key path (e.g. "vault.enabled")
            value: New value (string, number, boolean, list or mapping)

        Returns:
            Dict with status and the merged value after the update
        """
        check_write_permission(config)
        if not key_path.strip("."):
            raise ValueError("key_path must not be empty")

        saved = engine.store.update(key_path, value)
        return {
            "status": "updated" if saved else "failed",
            "key_path": key_path,
            "value": engine.get_config(key_path),
        }

    @mcp.tool()
    def engine_status() -> dict:
        """Summarize the sync configuration and open sync channels.

        Returns:
            Dict with enabled, host, vault_path, read_only and channels
            (data_type, path, state, last_error)
        """
        status = engine.status()
        status["read_only"] = config.read_only
        return status
