"""Parent/child ordering for checklist records."""

from dataclasses import replace

from vault_sync.codec.models import Record


def normalize_tree(records: list[Record]) -> list[Record]:
    """Return copies of ``records`` laid out as a checklist tree.

    Every record is followed directly by its descendants, siblings keep their
    relative order, and ``indent_level`` is recomputed from ``parent_id``.
    Records whose parent is missing (or part of a cycle) become roots. The
    input list and its records are not modified.
    """
    by_id = {record.id: record for record in records}
    children: dict[str | None, list[Record]] = {}
    for record in records:
        parent = record.parent_id if record.parent_id in by_id else None
        if parent == record.id:
            parent = None
        children.setdefault(parent, []).append(record)

    result: list[Record] = []
    emitted: set[int] = set()

    def _emit(root: Record) -> None:
        # Depth-first with an explicit stack; nesting depth is unbounded
        stack: list[tuple[Record, int, str | None]] = [(root, 0, None)]
        while stack:
            record, depth, parent_id = stack.pop()
            if id(record) in emitted:
                continue
            emitted.add(id(record))
            result.append(replace(record, indent_level=depth, parent_id=parent_id))
            for child in reversed(children.get(record.id, [])):
                stack.append((child, depth + 1, record.id))

    for root in children.get(None, []):
        _emit(root)

    # Anything unreachable from a root sits in a parent cycle
    for record in records:
        if id(record) not in emitted:
            _emit(record)

    return result
