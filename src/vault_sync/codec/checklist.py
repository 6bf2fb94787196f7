"""Checklist line codec.

Grammar of one record line::

    <tabs>- [ |x] [🔴|🔵] [🏷️category] text [field:: value]... [📎![name](path)]...
        [#tag]... [📅YYYY-MM-DD] [💡conclusion] [📝note] [^id]

Decoding strips tokens in a fixed order (block id, priority, category, due
date, attachments, inline fields, tags, conclusion, note, decorative markers);
whatever is left is the record text. Encoding writes the tokens back in the
order above, so ``parse(serialize(parse(x))) == parse(x)`` even when the input
was written by hand with a different token order.
"""

import logging
import re
from datetime import date

from vault_sync.codec.models import (
    Attachment,
    DataType,
    Priority,
    Record,
    collapse_whitespace,
    generate_id,
    normalize_id,
    payload_type_for,
)

logger = logging.getLogger(__name__)

HIGH_PRIORITY_SIGIL = "🔴"
LOW_PRIORITY_SIGIL = "🔵"
CATEGORY_SIGIL = "\U0001F3F7\ufe0f"
DUE_DATE_SIGIL = "📅"
ATTACHMENT_SIGIL = "📎"
CONCLUSION_SIGIL = "💡"
NOTE_SIGIL = "📝"

CHECKLIST_RE = re.compile(r"^([ \t]*)- \[([ xX])\] (.*)$")

BLOCK_ID_RE = re.compile(r"(?:^|\s+)\^([A-Za-z0-9-]+)\s*$")
PRIORITY_RE = re.compile(r"^(🔴|🔵)\ufe0f?\s*")
CATEGORY_RE = re.compile(r"^🏷\ufe0f?(\S+)\s*")
DUE_DATE_RE = re.compile(r"\s*📅\ufe0f?\s?(\d{4}-\d{2}-\d{2})")
ATTACHMENT_RE = re.compile(r"\s*📎\ufe0f?!\[([^\]]*)\]\(([^)]+)\)")
INLINE_FIELD_RE = re.compile(r"\s*\[([A-Za-z_]+)::\s*([^\]]*?)\s*\]")
TAG_RE = re.compile(r"(?<!\S)#([\w-]+)")
CONCLUSION_RE = re.compile(r"\s*💡\ufe0f?(.*?)(?=\s*📝|$)")
NOTE_RE = re.compile(r"\s*📝\ufe0f?(.*)$")
DECORATIVE_RE = re.compile(
    r"\s*(?:"
    r"✅\ufe0f?(?:\s?\d{4}-\d{2}-\d{2})?"
    r"|⏰\ufe0f?(?:\s?\d{4}-\d{2}-\d{2}(?:[ T]\d{1,2}:\d{2}(?::\d{2})?)?)?"
    r"|📌\ufe0f?"
    r"|📎\ufe0f?"
    r")"
)
# Prefix sigils that were not in prefix position when parsed
STRAY_PREFIX_RE = re.compile(r"^(?:(?:🔴|🔵|🏷)\ufe0f?\s*)+")


def is_record_line(line: str) -> bool:
    """Return True if the line matches the checklist grammar."""
    return CHECKLIST_RE.match(line.rstrip("\r")) is not None


def indent_depth(indent: str) -> int:
    """Requested nesting depth of an indent string.

    Tabs win; without tabs every two spaces count as one level.
    """
    tab_count = indent.count("\t")
    if tab_count > 0:
        return tab_count
    return indent.count(" ") // 2


def parse_line(line: str, data_type: DataType = DataType.TASK) -> tuple[int, Record] | None:
    """Decode a single checklist line.

    Returns ``(requested_depth, record)`` or None when the line is not a
    record line or its text is empty. ``parent_id`` and ``indent_level`` are
    left for :func:`parse` to fill in.
    """
    match = CHECKLIST_RE.match(line.rstrip("\r"))
    if not match:
        return None

    indent, checkbox, body = match.groups()
    remaining = body.strip()

    # 0. Block id, anchored at the end of the line
    record_id = None
    id_match = BLOCK_ID_RE.search(remaining)
    if id_match:
        record_id = id_match.group(1)
        remaining = remaining[: id_match.start()]

    # 1. Priority prefix
    priority = Priority.NORMAL
    priority_match = PRIORITY_RE.match(remaining)
    if priority_match:
        if priority_match.group(1) == HIGH_PRIORITY_SIGIL:
            priority = Priority.HIGH
        else:
            priority = Priority.LOW
        remaining = remaining[priority_match.end() :]

    # 2. Category prefix
    category = None
    category_match = CATEGORY_RE.match(remaining)
    if category_match:
        category = category_match.group(1)
        remaining = remaining[category_match.end() :]

    # 3. Due date, anywhere; every token is removed, the first valid one wins
    due_date = None
    for due_match in DUE_DATE_RE.finditer(remaining):
        if due_date is not None:
            break
        try:
            due_date = date.fromisoformat(due_match.group(1))
        except ValueError:
            logger.debug("Ignoring invalid due date %r", due_match.group(1))
    remaining = DUE_DATE_RE.sub("", remaining)

    # 3a. Attachments
    attachments = [
        Attachment(name=m.group(1), path=m.group(2)) for m in ATTACHMENT_RE.finditer(remaining)
    ]
    remaining = ATTACHMENT_RE.sub("", remaining)

    # 3b. Inline payload fields owned by this data type
    payload_cls = payload_type_for(data_type)
    owned = set(payload_cls.FIELD_NAMES)
    fields: dict[str, str] = {}

    def _take_field(m: re.Match) -> str:
        name = m.group(1).lower()
        if name not in owned:
            return m.group(0)
        fields.setdefault(name, m.group(2))
        return ""

    remaining = INLINE_FIELD_RE.sub(_take_field, remaining)

    # 4. Tags, in order of first appearance
    tags = list(dict.fromkeys(m.group(1) for m in TAG_RE.finditer(remaining)))
    remaining = TAG_RE.sub("", remaining)

    # 4a. Conclusion, up to the note sigil
    conclusion = None
    conclusion_match = CONCLUSION_RE.search(remaining)
    if conclusion_match:
        conclusion = collapse_whitespace(conclusion_match.group(1)) or None
        remaining = remaining[: conclusion_match.start()] + remaining[conclusion_match.end() :]

    # 5. Note, greedy to end of line
    note = None
    note_match = NOTE_RE.search(remaining)
    if note_match:
        note = collapse_whitespace(note_match.group(1)) or None
        remaining = remaining[: note_match.start()]

    # 6. Decorative markers
    remaining = DECORATIVE_RE.sub("", remaining)

    # 7. Text
    text = collapse_whitespace(STRAY_PREFIX_RE.sub("", remaining.strip()))
    if not text:
        return None

    record = Record(
        text=text,
        data_type=data_type,
        id=record_id or generate_id(),
        done=checkbox.lower() == "x",
        priority=priority,
        category=category,
        tags=tags,
        due_date=due_date,
        note=note,
        conclusion=conclusion,
        attachments=attachments,
        payload=payload_cls.from_fields(fields),
    )
    return indent_depth(indent), record


def parse(markdown_block: str, data_type: DataType = DataType.TASK) -> list[Record]:
    """Decode every checklist line of a block into records, in line order.

    Non-record lines are skipped. Nesting depth is clamped to the number of
    open ancestor levels, and ``parent_id`` points at the nearest open
    ancestor one level up.
    """
    records: list[Record] = []
    seen_ids: set[str] = set()
    # stack[n] is the last record seen at depth n
    stack: list[Record] = []

    for line in markdown_block.split("\n"):
        parsed = parse_line(line, data_type)
        if parsed is None:
            continue
        requested, record = parsed
        if record.id in seen_ids:
            # copy-pasted line; keep both records
            logger.debug("Duplicate record id %s, assigning a new one", record.id)
            record.id = generate_id()
        seen_ids.add(record.id)
        depth = min(requested, len(stack))

        record.indent_level = depth
        record.parent_id = stack[depth - 1].id if depth > 0 else None

        del stack[depth:]
        stack.append(record)
        records.append(record)

    return records


def format_line(record: Record) -> str:
    """Encode one record as a checklist line. Never fails."""
    parts: list[str] = []

    if record.priority == Priority.HIGH:
        parts.append(HIGH_PRIORITY_SIGIL)
    elif record.priority == Priority.LOW:
        parts.append(LOW_PRIORITY_SIGIL)

    if record.category:
        parts.append(f"{CATEGORY_SIGIL}{'-'.join(record.category.split())}")

    parts.append(collapse_whitespace(record.text))

    for name, value in record.payload.to_fields().items():
        parts.append(f"[{name}:: {value}]")

    for attachment in record.attachments:
        parts.append(f"{ATTACHMENT_SIGIL}![{attachment.name}]({attachment.path})")

    for tag in record.tags:
        parts.append(f"#{tag.lstrip('#')}")

    if record.due_date:
        parts.append(f"{DUE_DATE_SIGIL}{record.due_date.isoformat()}")

    if record.conclusion:
        parts.append(f"{CONCLUSION_SIGIL}{collapse_whitespace(record.conclusion)}")

    if record.note:
        parts.append(f"{NOTE_SIGIL}{collapse_whitespace(record.note)}")

    if record.id:
        parts.append(f"^{normalize_id(record.id)}")

    checkbox = "x" if record.done else " "
    indent = "\t" * max(record.indent_level, 0)
    body = " ".join(part for part in parts if part)
    return f"{indent}- [{checkbox}] {body}"


def serialize(records: list[Record]) -> str:
    """Encode records one line each, in the given order."""
    return "\n".join(format_line(record) for record in records)
