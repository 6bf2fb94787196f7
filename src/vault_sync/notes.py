"""Standalone notes linked to a record.

A note is an ordinary vault document with YAML front matter pointing back to
the record id. File names are ``<YYYYMMDD-HHMM>-<slug>.md`` inside a notes
folder; the engine picks the first name that is not taken.
"""

import re
from datetime import datetime

import yaml

from vault_sync.codec import Record

DEFAULT_NOTES_FOLDER = "TodoNotes"
MAX_SLUG_LENGTH = 80

WIKI_LINK_RE = re.compile(r"\[\[[^\]]+\]\]")
UNSAFE_FILENAME_CHARS_RE = re.compile(r'[\\/:*?"<>|]')


def note_slug(title: str) -> str:
    """File-name-safe version of a title."""
    cleaned = UNSAFE_FILENAME_CHARS_RE.sub(" ", WIKI_LINK_RE.sub(" ", title or ""))
    slug = re.sub(r"[-\s]+", "-", cleaned).strip("-")
    return (slug or "note")[:MAX_SLUG_LENGTH]


def normalize_folder(folder: str | None) -> str:
    return (folder or "").replace("\\", "/").strip("/")


def note_path(folder: str | None, title: str, created: datetime, counter: int = 0) -> str:
    """Vault-relative path of a note; ``counter`` > 0 disambiguates collisions."""
    name = f"{created:%Y%m%d-%H%M}-{note_slug(title)}"
    if counter:
        name = f"{name}-{counter}"
    folder = normalize_folder(folder)
    return f"{folder}/{name}.md" if folder else f"{name}.md"


def wiki_target(path: str) -> str:
    """Obsidian link target for a vault-relative path."""
    return re.sub(r"\.md$", "", path, flags=re.IGNORECASE)


def render_note(record: Record, created: datetime, source_path: str | None = None) -> str:
    """Markdown content of a new note for ``record``."""
    title = WIKI_LINK_RE.sub("", record.text).strip() or "Note"
    metadata = {
        "title": title,
        "record_id": record.id,
        "data_type": record.data_type.value,
        "status": "done" if record.done else "active",
        "created": created.isoformat(timespec="seconds"),
    }
    if record.category:
        metadata["category"] = record.category
    metadata["priority"] = record.priority.value

    content_lines = [
        "---",
        yaml.safe_dump(metadata, sort_keys=False, allow_unicode=True).rstrip("\n"),
        "---",
        "",
        f"# {title}",
        "",
    ]

    if source_path:
        content_lines.extend([f"> Source: [[{wiki_target(source_path)}]]", ""])

    content_lines.extend([
        "## Overview",
        "",
        f"- Status: {'done' if record.done else 'in progress'}",
        f"- Priority: {record.priority.value}",
        f"- Category: {record.category or 'none'}",
    ])

    if record.note:
        content_lines.extend(["", "## Notes", "", record.note])

    if record.conclusion:
        content_lines.extend(["", "## Conclusion", "", record.conclusion])

    content_lines.extend(["", "## Progress", "", "- [ ] "])
    return "\n".join(content_lines) + "\n"
