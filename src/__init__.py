"""
vault-sync - structured records stored as Markdown checklists in a notes vault.

Keeps tasks, calendar events, focus sessions, service keys and per-machine
project entries in human-editable Markdown files, so the vault stays the
source of truth and the application only rewrites its own checklist blocks.

Stack:
- Python + FastMCP (tool surface)
- PyYAML (layered settings, front matter)
- Markdown (source of truth)
"""

__version__ = "0.1.0"
