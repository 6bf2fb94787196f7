"""
Record codec for vault-sync.

Converts typed records to and from checklist-style Markdown lines. Pure
functions only: no file access happens here.
"""

from vault_sync.codec.checklist import format_line, is_record_line, parse, parse_line, serialize
from vault_sync.codec.models import (
    Attachment,
    DataType,
    EventPayload,
    Priority,
    ProjectPayload,
    Record,
    ServiceKeyPayload,
    SessionPayload,
    TaskPayload,
    generate_id,
    normalize_id,
    payload_type_for,
)
from vault_sync.codec.tree import normalize_tree

__all__ = [
    "Attachment",
    "DataType",
    "EventPayload",
    "Priority",
    "ProjectPayload",
    "Record",
    "ServiceKeyPayload",
    "SessionPayload",
    "TaskPayload",
    "format_line",
    "generate_id",
    "is_record_line",
    "normalize_id",
    "normalize_tree",
    "parse",
    "parse_line",
    "payload_type_for",
    "serialize",
]
