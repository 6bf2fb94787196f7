"""Filename templates: map a data type and a date to a vault-relative path."""

import logging
import re
from datetime import date
from typing import Protocol

from vault_sync.codec import DataType

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{([a-z]+)\}")

DEFAULT_TEMPLATE = "{year}-W{week}.md"

MODE_AUTO = "auto"
MODE_MANUAL = "manual"


def template_vars(as_of: date) -> dict[str, str]:
    """Placeholder values for a date.

    ``week`` is the ISO-8601 week number (Monday start, week 1 holds the
    year's first Thursday). ``year`` is the calendar year.
    """
    return {
        "year": f"{as_of.year:04d}",
        "month": f"{as_of.month:02d}",
        "day": f"{as_of.day:02d}",
        "week": f"{as_of.isocalendar()[1]:02d}",
        "date": as_of.isoformat(),
    }


def resolve(template: str, as_of: date) -> str:
    """Substitute date placeholders in a template.

    Unknown placeholders are left as written.

    >>> resolve("{year}-W{week}.md", date(2024, 1, 1))
    '2024-W01.md'
    """
    values = template_vars(as_of)
    return PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template)


class SettingsSource(Protocol):
    def get(self, key_path: str, default=None): ...


class PathResolver:
    """Resolve the vault-relative file for a data type from content-file settings.

    Settings (under ``content_files``):
        mode: ``auto`` resolves templates, ``manual`` always returns ``manual_file``.
        template: shared template for every data type.
        <data_type>_template: optional per-type override, e.g. ``task_template``.
        manual_file: fixed path used in manual mode.
    """

    def __init__(self, settings: SettingsSource, prefix: str = "content_files"):
        self._settings = settings
        self._prefix = prefix

    def _setting(self, name: str, default=None):
        return self._settings.get(f"{self._prefix}.{name}", default)

    def template_for(self, data_type: DataType) -> str:
        """The template string in effect for a data type."""
        per_type = self._setting(f"{DataType(data_type).value}_template")
        if per_type:
            return str(per_type)
        return str(self._setting("template") or DEFAULT_TEMPLATE)

    def resolve_path(self, data_type: DataType, as_of: date | None = None) -> str:
        """Vault-relative path for ``data_type`` on ``as_of`` (default today)."""
        mode = str(self._setting("mode") or MODE_AUTO).lower()
        if mode == MODE_MANUAL:
            manual_file = self._setting("manual_file")
            if manual_file:
                return str(manual_file)
            logger.warning("Manual mode without manual_file, falling back to template")
        elif mode != MODE_AUTO:
            logger.warning("Unknown content_files mode %r, using auto", mode)

        return resolve(self.template_for(data_type), as_of or date.today())
