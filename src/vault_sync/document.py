"""Locate and replace the managed checklist block inside a vault document.

A document is split into three regions:

- optional YAML front matter, kept verbatim;
- an optional section, the lines under a configured heading up to the next
  heading of the same or a higher level;
- the managed block, the first maximal run of consecutive checklist lines
  between the section heading and the next heading of any level (or in the
  whole body when no section is configured). Checklists under subheadings
  belong to those subheadings.

Only the managed block is ever rewritten; everything else stays byte-for-byte
in place.
"""

import logging
import re
from dataclasses import dataclass, field

import yaml

from vault_sync.codec import is_record_line

logger = logging.getLogger(__name__)

HEADING_RE = re.compile(r"^(#{1,6})\s+\S")


@dataclass
class DocumentLayout:
    """Line indexes of the regions of a document (end indexes exclusive)."""

    lines: list[str]
    body_start: int = 0
    section_start: int | None = None  # index of the heading line
    section_end: int | None = None
    block_start: int | None = None
    block_end: int | None = None
    frontmatter: dict = field(default_factory=dict)

    @property
    def has_block(self) -> bool:
        return self.block_start is not None

    def block_text(self) -> str:
        if self.block_start is None:
            return ""
        return "\n".join(self.lines[self.block_start : self.block_end])


def frontmatter_end(lines: list[str]) -> int:
    """Index of the first body line (0 when there is no front matter)."""
    if not lines or lines[0].strip() != "---":
        return 0
    for i in range(1, len(lines)):
        if lines[i].strip() == "---":
            return i + 1
    # unterminated: treat as body
    return 0


def parse_frontmatter(content: str) -> tuple[dict, str]:
    """Parse YAML front matter.

    Returns:
        Tuple of (metadata, body). Invalid or missing front matter gives an
        empty mapping and the full content.
    """
    lines = content.split("\n")
    end = frontmatter_end(lines)
    if end == 0:
        return {}, content

    body = "\n".join(lines[end:])
    try:
        raw = yaml.safe_load("\n".join(lines[1 : end - 1]))
    except yaml.YAMLError as e:
        logger.debug("Invalid YAML front matter: %s", e)
        return {}, body
    return (raw if isinstance(raw, dict) else {}), body


def heading_level(line: str) -> int:
    """Markdown heading level of a line, 0 if it is not a heading."""
    match = HEADING_RE.match(line.strip())
    return len(match.group(1)) if match else 0


def find_section(lines: list[str], heading: str, start: int = 0) -> tuple[int, int] | None:
    """Find ``heading`` and return (heading_index, end_index).

    The section ends at the next heading whose level is the same or higher
    (fewer ``#``), or at the end of the document.
    """
    target = heading.strip()
    level = heading_level(target) or 1
    for i in range(start, len(lines)):
        if lines[i].strip() != target:
            continue
        for j in range(i + 1, len(lines)):
            other = heading_level(lines[j])
            if other and other <= level:
                return i, j
        return i, len(lines)
    return None


def next_heading(lines: list[str], start: int, end: int) -> int:
    """Index of the first heading in ``lines[start:end]``, or ``end``."""
    for i in range(start, end):
        if heading_level(lines[i]):
            return i
    return end


def find_block(lines: list[str], start: int, end: int) -> tuple[int, int] | None:
    """First maximal run of checklist lines within ``lines[start:end]``."""
    block_start = None
    for i in range(start, end):
        if is_record_line(lines[i]):
            if block_start is None:
                block_start = i
        elif block_start is not None:
            return block_start, i
    if block_start is not None:
        return block_start, end
    return None


def layout(content: str, section: str | None = None) -> DocumentLayout:
    """Compute the regions of a document."""
    lines = content.split("\n")
    result = DocumentLayout(lines=lines)
    result.body_start = frontmatter_end(lines)
    if result.body_start:
        result.frontmatter, _ = parse_frontmatter(content)

    search_start, search_end = result.body_start, len(lines)
    if section:
        bounds = find_section(lines, section, result.body_start)
        if bounds is None:
            return result
        result.section_start, result.section_end = bounds
        search_start = bounds[0] + 1
        search_end = next_heading(lines, search_start, bounds[1])

    block = find_block(lines, search_start, search_end)
    if block is not None:
        result.block_start, result.block_end = block
    return result


def extract_block(content: str, section: str | None = None) -> str:
    """Text of the managed block ("" when there is none)."""
    return layout(content, section).block_text()


def _append(content: str, chunk: str) -> str:
    """Append a chunk at the end, separated from existing text by one blank line."""
    if not content.strip():
        return chunk + "\n"
    if content.endswith("\n\n"):
        return content + chunk + "\n"
    if content.endswith("\n"):
        return content + "\n" + chunk + "\n"
    return content + "\n\n" + chunk + "\n"


def replace_block(content: str, block: str, section: str | None = None) -> str:
    """Return ``content`` with its managed block replaced by ``block``.

    When the document has no block yet it is inserted right after the section
    heading, or, when the section is missing too, appended at the end of the
    document (with the heading). An empty ``block`` removes the managed
    lines; nothing is created for it.
    """
    doc = layout(content, section)
    lines = doc.lines
    new_lines = block.split("\n") if block else []

    if doc.has_block:
        return "\n".join(lines[: doc.block_start] + new_lines + lines[doc.block_end :])

    if not new_lines:
        return content

    if section and doc.section_start is not None:
        insert_at = doc.section_start + 1
        chunk = [""] + new_lines
        if insert_at < len(lines) and lines[insert_at].strip():
            chunk.append("")
        return "\n".join(lines[:insert_at] + chunk + lines[insert_at:])

    if section:
        return _append(content, f"{section.strip()}\n\n{block}")
    return _append(content, block)


def append_to_section(content: str, heading: str, chunk: str) -> str:
    """Return ``content`` with ``chunk`` added at the end of a section.

    ``heading`` is a full heading line; bare titles become level-1 headings.
    The chunk goes after the section's last non-blank line, before the next
    heading of the same or a higher level. A missing section is appended to
    the document, heading first. Front matter is never touched.
    """
    heading = heading.strip()
    if not heading_level(heading):
        heading = f"# {heading}"
    new_lines = chunk.rstrip("\n").split("\n")

    lines = content.split("\n")
    bounds = find_section(lines, heading, frontmatter_end(lines))
    if bounds is None:
        return _append(content, f"{heading}\n\n{chunk.rstrip()}")

    start, end = bounds
    insert_at = end
    while insert_at > start + 1 and not lines[insert_at - 1].strip():
        insert_at -= 1

    if insert_at == start + 1:
        new_lines = [""] + new_lines
    if insert_at < len(lines) and insert_at == end:
        # next heading directly below
        new_lines = new_lines + [""]
    return "\n".join(lines[:insert_at] + new_lines + lines[insert_at:])
