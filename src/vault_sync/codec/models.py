"""Data models for records stored as Markdown checklist lines."""

import re
import secrets
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


class DataType(str, Enum):
    """Kinds of records the engine synchronizes."""

    TASK = "task"
    CALENDAR_EVENT = "calendar_event"
    FOCUS_SESSION = "focus_session"
    SERVICE_KEY = "service_key"
    PROJECT_ENTRY = "project_entry"


class Priority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


def generate_id() -> str:
    """Return a new record id.

    Ids are millisecond timestamp + random suffix, both base-36-ish, so they
    sort roughly by creation and are valid Obsidian block references.
    """
    return f"{int(time.time() * 1000):x}-{secrets.token_hex(4)}"


INVALID_ID_CHARS_RE = re.compile(r"[^A-Za-z0-9-]")


def normalize_id(value: str) -> str:
    """Map an id onto the characters allowed in an Obsidian block reference."""
    return INVALID_ID_CHARS_RE.sub("-", value.strip())


def collapse_whitespace(value: str) -> str:
    return " ".join(value.split())


@dataclass
class Attachment:
    """A file attached to a record."""

    name: str
    path: str

    @property
    def is_image(self) -> bool:
        return self.path.lower().endswith((".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp"))


# Payloads
#
# Each payload owns a set of inline field names. On a checklist line they are
# written as Dataview-style ``[name:: value]`` tokens. ``to_fields`` returns
# only the fields that differ from their defaults so absent values stay absent.


@dataclass
class TaskPayload:
    """Tasks carry everything in the common record fields."""

    FIELD_NAMES = ()

    def to_fields(self) -> dict[str, str]:
        return {}

    @classmethod
    def from_fields(cls, fields: dict[str, str]) -> "TaskPayload":
        return cls()


@dataclass
class EventPayload:
    """Calendar event timing. The event date is the record's due date."""

    start: str | None = None  # HH:MM
    end: str | None = None  # HH:MM
    all_day: bool = False

    FIELD_NAMES = ("start", "end", "allday")

    def __post_init__(self) -> None:
        self.start = _parse_clock(self.start)
        self.end = _parse_clock(self.end)

    def to_fields(self) -> dict[str, str]:
        fields = {}
        if self.start:
            fields["start"] = self.start
        if self.end:
            fields["end"] = self.end
        if self.all_day:
            fields["allday"] = "true"
        return fields

    @classmethod
    def from_fields(cls, fields: dict[str, str]) -> "EventPayload":
        return cls(
            start=fields.get("start"),
            end=fields.get("end"),
            all_day=_parse_bool(fields.get("allday"), default=False),
        )

    @property
    def duration_minutes(self) -> int | None:
        """Minutes between start and end, or None when not computable."""
        if self.all_day or not self.start or not self.end:
            return None
        diff = _clock_minutes(self.end) - _clock_minutes(self.start)
        return diff if diff > 0 else None


@dataclass
class SessionPayload:
    """Focus session timing. The session date is the record's due date."""

    start: str | None = None
    end: str | None = None
    minutes: int | None = None

    FIELD_NAMES = ("start", "end", "minutes")

    def __post_init__(self) -> None:
        self.start = _parse_clock(self.start)
        self.end = _parse_clock(self.end)

    def to_fields(self) -> dict[str, str]:
        fields = {}
        if self.start:
            fields["start"] = self.start
        if self.end:
            fields["end"] = self.end
        if self.minutes is not None:
            fields["minutes"] = str(self.minutes)
        return fields

    @classmethod
    def from_fields(cls, fields: dict[str, str]) -> "SessionPayload":
        return cls(
            start=fields.get("start"),
            end=fields.get("end"),
            minutes=_parse_int(fields.get("minutes")),
        )


@dataclass
class ServiceKeyPayload:
    """An API key entry. The record text is the display name."""

    service: str | None = None
    key: str | None = None
    url: str | None = None
    provider: str | None = None
    model: str | None = None
    enabled: bool = True
    timeout: int | None = None

    FIELD_NAMES = ("service", "key", "url", "provider", "model", "enabled", "timeout")

    def to_fields(self) -> dict[str, str]:
        fields = {}
        for name in ("service", "key", "url", "provider", "model"):
            value = getattr(self, name)
            if value:
                fields[name] = value
        if not self.enabled:
            fields["enabled"] = "false"
        if self.timeout is not None:
            fields["timeout"] = str(self.timeout)
        return fields

    @classmethod
    def from_fields(cls, fields: dict[str, str]) -> "ServiceKeyPayload":
        return cls(
            service=fields.get("service") or None,
            key=fields.get("key") or None,
            url=fields.get("url") or None,
            provider=fields.get("provider") or None,
            model=fields.get("model") or None,
            enabled=_parse_bool(fields.get("enabled"), default=True),
            timeout=_parse_int(fields.get("timeout")),
        )


@dataclass
class ProjectPayload:
    """Per-machine project metadata. The record text is the project name."""

    host: str | None = None
    path: str | None = None
    remote: str | None = None
    branch: str | None = None
    platform: str | None = None
    build_config: str | None = None

    FIELD_NAMES = ("host", "path", "remote", "branch", "platform", "build")

    def to_fields(self) -> dict[str, str]:
        fields = {}
        for name in ("host", "path", "remote", "branch", "platform"):
            value = getattr(self, name)
            if value:
                fields[name] = value
        if self.build_config:
            fields["build"] = self.build_config
        return fields

    @classmethod
    def from_fields(cls, fields: dict[str, str]) -> "ProjectPayload":
        return cls(
            host=fields.get("host") or None,
            path=fields.get("path") or None,
            remote=fields.get("remote") or None,
            branch=fields.get("branch") or None,
            platform=fields.get("platform") or None,
            build_config=fields.get("build") or None,
        )


Payload = TaskPayload | EventPayload | SessionPayload | ServiceKeyPayload | ProjectPayload

PAYLOAD_TYPES: dict[DataType, type] = {
    DataType.TASK: TaskPayload,
    DataType.CALENDAR_EVENT: EventPayload,
    DataType.FOCUS_SESSION: SessionPayload,
    DataType.SERVICE_KEY: ServiceKeyPayload,
    DataType.PROJECT_ENTRY: ProjectPayload,
}


def payload_type_for(data_type: DataType) -> type:
    """Return the payload class for a data type."""
    try:
        return PAYLOAD_TYPES[data_type]
    except KeyError:
        raise ValueError(f"Unknown data type: {data_type!r}") from None


@dataclass(eq=False)
class Record:
    """One structured record, encoded as one checklist line.

    Equality compares every persisted field; timestamps are in-memory only and
    tags compare as a set. Whitespace in text, note, conclusion, category and
    tags is normalized on construction, and ids are restricted to letters,
    digits and dashes.
    """

    text: str
    data_type: DataType = DataType.TASK
    id: str = field(default_factory=generate_id)
    done: bool = False
    priority: Priority = Priority.NORMAL
    category: str | None = None
    tags: list[str] = field(default_factory=list)
    due_date: date | None = None
    note: str | None = None
    conclusion: str | None = None
    attachments: list[Attachment] = field(default_factory=list)
    parent_id: str | None = None
    indent_level: int = 0
    payload: Payload | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        self.data_type = DataType(self.data_type)
        self.priority = Priority(self.priority)
        if self.payload is None:
            self.payload = payload_type_for(self.data_type)()

        # Normalize to what a checklist line can hold, so the record equals
        # its own parse after a write
        self.id = normalize_id(self.id or "") or generate_id()
        if self.parent_id:
            self.parent_id = normalize_id(self.parent_id) or None
        self.text = collapse_whitespace(self.text or "")
        self.category = "-".join((self.category or "").split()) or None
        self.note = collapse_whitespace(self.note or "") or None
        self.conclusion = collapse_whitespace(self.conclusion or "") or None
        # first-seen order, no duplicates
        tags = ("-".join(t.strip().lstrip("#").split()) for t in self.tags)
        self.tags = list(dict.fromkeys(t for t in tags if t))

    def touch(self) -> None:
        """Mark the record as modified now."""
        self.updated_at = datetime.now()

    def _key(self) -> tuple:
        return (
            self.id,
            self.data_type,
            self.text,
            self.done,
            self.priority,
            self.category,
            frozenset(self.tags),
            self.due_date,
            self.note,
            self.conclusion,
            tuple((a.name, a.path) for a in self.attachments),
            self.parent_id,
            self.indent_level,
            self.payload,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return self._key() == other._key()

    __hash__ = None  # mutable

    def to_dict(self) -> dict:
        """Plain JSON-friendly representation."""
        return {
            "id": self.id,
            "data_type": self.data_type.value,
            "text": self.text,
            "done": self.done,
            "priority": self.priority.value,
            "category": self.category,
            "tags": list(self.tags),
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "note": self.note,
            "conclusion": self.conclusion,
            "attachments": [{"name": a.name, "path": a.path} for a in self.attachments],
            "parent_id": self.parent_id,
            "indent_level": self.indent_level,
            "payload": self.payload.to_fields(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict, data_type: DataType | None = None) -> "Record":
        """Build a record from ``to_dict`` output or a caller-supplied dict.

        Unknown keys are ignored. Missing ``id`` gets a fresh one.
        """
        kind = DataType(data.get("data_type") or data_type or DataType.TASK)
        due = data.get("due_date")
        if isinstance(due, str):
            due = date.fromisoformat(due) if due else None
        payload_fields = {k: str(v) for k, v in (data.get("payload") or {}).items()}
        kwargs = {
            "text": data.get("text", ""),
            "data_type": kind,
            "done": bool(data.get("done", False)),
            "priority": Priority(data.get("priority") or Priority.NORMAL),
            "category": data.get("category") or None,
            "tags": list(data.get("tags") or []),
            "due_date": due,
            "note": data.get("note") or None,
            "conclusion": data.get("conclusion") or None,
            "attachments": [
                Attachment(name=a.get("name", ""), path=a["path"])
                for a in data.get("attachments") or []
            ],
            "parent_id": data.get("parent_id") or None,
            "indent_level": int(data.get("indent_level") or 0),
            "payload": payload_type_for(kind).from_fields(payload_fields),
        }
        if data.get("id"):
            kwargs["id"] = data["id"]
        return cls(**kwargs)


def _parse_clock(value: str | None) -> str | None:
    """Normalize ``H:MM`` to ``HH:MM``; anything else is dropped."""
    if not value:
        return None
    hours, sep, minutes = value.strip().partition(":")
    if not sep or not hours.isdigit() or not minutes.isdigit():
        return None
    h, m = int(hours), int(minutes)
    if h > 23 or m > 59:
        return None
    return f"{h:02d}:{m:02d}"


def _clock_minutes(value: str) -> int:
    hours, _, minutes = value.partition(":")
    return int(hours) * 60 + int(minutes)


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes"):
        return True
    if lowered in ("0", "false", "no"):
        return False
    return default
