"""Tests for the record codec."""

import sys
from datetime import date

import pytest

from vault_sync.codec import (
    Attachment,
    DataType,
    EventPayload,
    Priority,
    ProjectPayload,
    Record,
    ServiceKeyPayload,
    SessionPayload,
    format_line,
    is_record_line,
    normalize_tree,
    parse,
    parse_line,
    payload_type_for,
    serialize,
)

TAG = "\U0001F3F7\ufe0f"  # category sigil


class TestLineGrammar:
    """Tests for recognizing checklist lines."""

    @pytest.mark.parametrize(
        "line",
        ["- [ ] Buy milk", "- [x] Done", "- [X] Done", "\t\t- [ ] Nested", "    - [ ] Spaces"],
    )
    def test_record_lines(self, line):
        assert is_record_line(line)

    @pytest.mark.parametrize(
        "line",
        ["# TODO List", "- Buy milk", "-[ ] no space", "- [] empty box", "* [ ] star", "1. [ ] x", ""],
    )
    def test_non_record_lines(self, line):
        assert not is_record_line(line)

    def test_non_record_lines_are_skipped(self):
        block = "Some prose\n- [ ] First\n> quote\n- [x] Second"
        records = parse(block)
        assert [r.text for r in records] == ["First", "Second"]
        assert [r.done for r in records] == [False, True]


class TestParse:
    """Tests for decoding checklist lines."""

    def test_worked_example(self):
        """Test the reference line decodes into every field."""
        block = (
            "- [ ] Parent\n"
            f"\t- [ ] 🔴 {TAG}Dev Fix crash #bug #urgent 📅2025-01-08 📝see log"
        )
        parent, child = parse(block)

        assert child.priority == Priority.HIGH
        assert child.category == "Dev"
        assert child.text == "Fix crash"
        assert child.tags == ["bug", "urgent"]
        assert child.due_date == date(2025, 1, 8)
        assert child.note == "see log"
        assert child.indent_level == 1
        assert child.parent_id == parent.id
        assert child.done is False

    def test_absent_fields_default(self):
        """Test a bare line yields defaults for every optional field."""
        (record,) = parse("- [ ] Plain task")
        assert record.text == "Plain task"
        assert record.priority == Priority.NORMAL
        assert record.category is None
        assert record.tags == []
        assert record.due_date is None
        assert record.note is None
        assert record.conclusion is None
        assert record.attachments == []
        assert record.parent_id is None
        assert record.indent_level == 0
        assert record.id

    def test_low_priority(self):
        (record,) = parse("- [ ] 🔵 Someday")
        assert record.priority == Priority.LOW
        assert record.text == "Someday"

    def test_block_id_is_kept(self):
        (record,) = parse("- [ ] Write report ^abc-123")
        assert record.id == "abc-123"
        assert record.text == "Write report"

    def test_lines_without_id_get_fresh_ids(self):
        first, second = parse("- [ ] One\n- [ ] Two")
        assert first.id and second.id
        assert first.id != second.id

    def test_duplicate_ids_are_reassigned(self):
        """Test a copy-pasted line does not collapse into its original."""
        first, second = parse("- [ ] One ^same\n- [ ] One ^same")
        assert first.id == "same"
        assert second.id != "same"

    def test_empty_text_drops_record(self):
        assert parse("- [ ] #onlytag 📅2025-01-01") == []

    def test_invalid_due_date_ignored(self):
        (record,) = parse("- [ ] Task 📅2025-13-45")
        assert record.due_date is None
        assert record.text == "Task"

    def test_first_valid_due_date_wins(self):
        (record,) = parse("- [ ] Task 📅2025-02-30 📅2025-03-01 📅2025-04-01")
        assert record.due_date == date(2025, 3, 1)
        assert record.text == "Task"

    def test_tags_anywhere_first_seen_order(self):
        (record,) = parse("- [ ] #b Fix #a the #b thing")
        assert record.tags == ["b", "a"]
        assert record.text == "Fix the thing"

    def test_hash_inside_word_is_not_tag(self):
        (record,) = parse("- [ ] Learn C# today")
        assert record.tags == []
        assert record.text == "Learn C# today"

    def test_note_is_greedy(self):
        """Test everything after the note sigil belongs to the note."""
        (record,) = parse("- [ ] Task 📝 look at #this 📌 later")
        assert record.note == "look at 📌 later"
        assert record.text == "Task"
        assert record.tags == ["this"]

    def test_conclusion_before_note(self):
        (record,) = parse("- [x] Experiment 💡 it works 📝 details here")
        assert record.conclusion == "it works"
        assert record.note == "details here"
        assert record.text == "Experiment"

    def test_decorative_sigils_stripped(self):
        (record,) = parse("- [x] Ship it ✅ 2025-01-09 ⏰ 2025-01-08 09:30 📌")
        assert record.text == "Ship it"
        assert record.done is True

    def test_attachments(self):
        (record,) = parse("- [ ] Review 📎![brief](files/brief.pdf) 📎![shot](img/a.png)")
        assert record.attachments == [
            Attachment(name="brief", path="files/brief.pdf"),
            Attachment(name="shot", path="img/a.png"),
        ]
        assert record.attachments[1].is_image
        assert record.text == "Review"

    def test_attachment_path_with_spaces(self):
        (record,) = parse("- [ ] Review 📎![shot](img/Screenshot 1.png) ^r1")
        assert record.attachments == [Attachment(name="shot", path="img/Screenshot 1.png")]
        assert record.text == "Review"

    def test_whitespace_collapsed(self):
        (record,) = parse("- [ ]   Lots    of   space  ")
        assert record.text == "Lots of space"

    def test_crlf_line_endings(self):
        records = parse("- [ ] One\r\n- [x] Two\r\n")
        assert [r.text for r in records] == ["One", "Two"]

    def test_parse_line_returns_requested_depth(self):
        depth, record = parse_line("\t\t\t- [ ] Deep")
        assert depth == 3
        assert record.text == "Deep"

    def test_parse_line_non_record(self):
        assert parse_line("plain text") is None


class TestHierarchy:
    """Tests for indentation and parent links."""

    def test_depth_is_clamped(self):
        """Test a first line indented three levels lands at depth 0."""
        (record,) = parse("\t\t\t- [ ] Orphan")
        assert record.indent_level == 0
        assert record.parent_id is None

    def test_depth_clamped_to_open_ancestors(self):
        root, child = parse("- [ ] Root\n\t\t\t- [ ] Too deep")
        assert child.indent_level == 1
        assert child.parent_id == root.id

    def test_spaces_count_two_per_level(self):
        root, child, grandchild = parse("- [ ] A\n  - [ ] B\n    - [ ] C")
        assert [r.indent_level for r in (root, child, grandchild)] == [0, 1, 2]
        assert grandchild.parent_id == child.id

    def test_odd_spaces_round_down(self):
        root, child = parse("- [ ] A\n   - [ ] B")
        assert child.indent_level == 1
        assert child.parent_id == root.id

    def test_parent_is_nearest_open_ancestor(self):
        block = "- [ ] A\n\t- [ ] A1\n\t\t- [ ] A1a\n\t- [ ] A2\n- [ ] B\n\t- [ ] B1"
        a, a1, a1a, a2, b, b1 = parse(block)
        assert a1.parent_id == a.id
        assert a1a.parent_id == a1.id
        assert a2.parent_id == a.id
        assert b.parent_id is None
        assert b1.parent_id == b.id

    def test_dropped_line_does_not_open_level(self):
        """Test an empty-text line neither appears nor becomes a parent."""
        root, child = parse("- [ ] Root\n\t- [ ] #tagonly\n\t\t- [ ] Child")
        assert child.indent_level == 1
        assert child.parent_id == root.id


class TestSerialize:
    """Tests for encoding records."""

    def test_field_order(self):
        record = Record(
            text="Fix crash",
            id="r1",
            priority=Priority.HIGH,
            category="Dev",
            tags=["bug", "urgent"],
            due_date=date(2025, 1, 8),
            conclusion="root cause found",
            note="see log",
            indent_level=1,
        )
        assert format_line(record) == (
            f"\t- [ ] 🔴 {TAG}Dev Fix crash #bug #urgent 📅2025-01-08 "
            "💡root cause found 📝see log ^r1"
        )

    def test_done_and_low_priority(self):
        record = Record(text="Later", id="r2", done=True, priority=Priority.LOW)
        assert format_line(record) == "- [x] 🔵 Later ^r2"

    def test_category_spaces_joined(self):
        record = Record(text="x", id="r3", category="Side project")
        assert format_line(record) == f"- [ ] {TAG}Side-project x ^r3"

    def test_serialize_joins_lines(self):
        records = [Record(text="A", id="a"), Record(text="B", id="b", indent_level=1)]
        assert serialize(records) == "- [ ] A ^a\n\t- [ ] B ^b"

    def test_serialize_empty(self):
        assert serialize([]) == ""


class TestRoundTrip:
    """Tests for parse/serialize stability."""

    HAND_WRITTEN = "\n".join(
        [
            f"- [ ] #urgent 🔴 {TAG}Work Prepare   slides 📅2025-02-03 📝ask Ana",
            "\t- [x] Draft outline ✅ 2025-01-30",
            "\t\t\t- [ ] 🔵 Find images #design 📎![logo](assets/logo.png)",
            "- [X] Call plumber 💡fixed 📝 paid cash ^plumber",
            "  - [ ] Leak under sink",
        ]
    )

    def test_reparse_is_stable(self):
        first = parse(self.HAND_WRITTEN)
        second = parse(serialize(first))
        assert second == first

    def test_constructed_records_survive_a_write(self):
        records = [
            Record(
                text="Ship  the\nrelease",
                id="rel_1",
                priority=Priority.HIGH,
                category="deep work",
                tags=["work", "q3 plan"],
                due_date=date(2024, 5, 1),
                note="check\n  logs",
                conclusion="went  fine",
                attachments=[Attachment("shot", "img/Screenshot 1.png")],
            ),
            Record(text="Write  notes", id="rel_2", parent_id="rel_1", indent_level=1, done=True),
        ]
        assert parse(serialize(records)) == records

    def test_constructed_payload_records_survive_a_write(self):
        event = Record(
            text="Standup",
            data_type=DataType.CALENDAR_EVENT,
            id="evt_1",
            due_date=date(2024, 5, 2),
            payload=EventPayload(start="9:30", end="10:00"),
        )
        key = Record(
            text="GitHub",
            data_type=DataType.SERVICE_KEY,
            id="gh",
            payload=ServiceKeyPayload(service="github", key="ghp_abc", enabled=False, timeout=30),
        )
        assert parse(serialize([event]), DataType.CALENDAR_EVENT) == [event]
        assert parse(serialize([key]), DataType.SERVICE_KEY) == [key]

    def test_serialize_is_fixed_point_after_one_pass(self):
        once = serialize(parse(self.HAND_WRITTEN))
        assert serialize(parse(once)) == once

    @pytest.mark.parametrize("data_type", list(DataType))
    def test_reparse_stable_for_every_data_type(self, data_type):
        records = parse(self.HAND_WRITTEN, data_type)
        assert parse(serialize(records), data_type) == records
        assert all(r.data_type == data_type for r in records)


class TestPayloads:
    """Tests for per-type inline fields."""

    def test_event_fields(self):
        (record,) = parse(
            "- [ ] Standup [start:: 9:30] [end:: 09:45] 📅2025-01-08",
            DataType.CALENDAR_EVENT,
        )
        assert record.payload == EventPayload(start="09:30", end="09:45")
        assert record.payload.duration_minutes == 15
        assert record.text == "Standup"
        assert "[start:: 09:30] [end:: 09:45]" in format_line(record)

    def test_all_day_event(self):
        (record,) = parse("- [ ] Holiday [allday:: true]", DataType.CALENDAR_EVENT)
        assert record.payload.all_day is True
        assert record.payload.duration_minutes is None

    def test_session_invalid_minutes_ignored(self):
        (record,) = parse("- [x] Deep work [minutes:: lots]", DataType.FOCUS_SESSION)
        assert record.payload == SessionPayload()
        assert record.text == "Deep work"

    def test_session_fields(self):
        (record,) = parse(
            "- [x] Deep work [start:: 10:00] [minutes:: 25]", DataType.FOCUS_SESSION
        )
        assert record.payload.start == "10:00"
        assert record.payload.minutes == 25

    def test_service_key_fields(self):
        line = (
            "- [ ] OpenAI [service:: openai] [key:: sk-123] [model:: gpt-4o] "
            "[enabled:: false] [timeout:: 30]"
        )
        (record,) = parse(line, DataType.SERVICE_KEY)
        assert record.payload == ServiceKeyPayload(
            service="openai", key="sk-123", model="gpt-4o", enabled=False, timeout=30
        )
        assert parse(serialize([record]), DataType.SERVICE_KEY) == [record]

    def test_project_fields(self):
        line = "- [ ] webapp [host:: laptop] [path:: ~/code/webapp] [build:: Release]"
        (record,) = parse(line, DataType.PROJECT_ENTRY)
        assert record.payload == ProjectPayload(
            host="laptop", path="~/code/webapp", build_config="Release"
        )

    def test_fields_not_owned_stay_in_text(self):
        (record,) = parse("- [ ] Read [start:: 10:00]", DataType.TASK)
        assert record.text == "Read [start:: 10:00]"

    def test_payload_type_for_every_data_type(self):
        for data_type in DataType:
            assert isinstance(Record(text="x", data_type=data_type).payload, payload_type_for(data_type))


class TestRecord:
    """Tests for the Record model."""

    def test_equality_ignores_timestamps_and_tag_order(self):
        a = Record(text="x", id="1", tags=["a", "b"])
        b = Record(text="x", id="1", tags=["b", "a"])
        b.touch()
        assert a == b

    def test_equality_sees_persisted_fields(self):
        assert Record(text="x", id="1") != Record(text="x", id="1", done=True)

    def test_tags_normalized(self):
        record = Record(text="x", tags=["#a", "b", "a", "#"])
        assert record.tags == ["a", "b"]

    def test_ids_limited_to_block_reference_characters(self):
        parent = Record(text="Parent", id="task_1")
        child = Record(text="Child", id="task 2", parent_id="task_1")
        assert parent.id == "task-1"
        assert child.id == "task-2"
        assert child.parent_id == parent.id
        assert parse(serialize([parent]))[0].id == "task-1"

    def test_empty_id_replaced(self):
        assert Record(text="x", id="").id

    def test_whitespace_normalized(self):
        record = Record(text=" a  b\n c ", note="  ", conclusion="x\ty", category="Side project")
        assert record.text == "a b c"
        assert record.note is None
        assert record.conclusion == "x y"
        assert record.category == "Side-project"

    def test_tag_spaces_become_dashes(self):
        assert Record(text="x", tags=["q3 plan", " #ops "]).tags == ["q3-plan", "ops"]

    def test_dict_round_trip(self):
        record = Record(
            text="Standup",
            data_type=DataType.CALENDAR_EVENT,
            due_date=date(2025, 1, 8),
            payload=EventPayload(start="09:00", end="09:15"),
            attachments=[Attachment("a", "b.png")],
        )
        assert Record.from_dict(record.to_dict()) == record

    def test_from_dict_assigns_id(self):
        record = Record.from_dict({"text": "new"}, DataType.TASK)
        assert record.id
        assert record.data_type == DataType.TASK


class TestNormalizeTree:
    """Tests for ordering records as a tree."""

    def test_children_follow_parents(self):
        child = Record(text="child", id="c", parent_id="p")
        other = Record(text="other", id="o")
        parent = Record(text="parent", id="p")
        ordered = normalize_tree([child, other, parent])
        assert [r.id for r in ordered] == ["o", "p", "c"]
        assert [r.indent_level for r in ordered] == [0, 0, 1]

    def test_missing_parent_becomes_root(self):
        (record,) = normalize_tree([Record(text="x", id="x", parent_id="gone", indent_level=2)])
        assert record.parent_id is None
        assert record.indent_level == 0

    def test_cycle_is_broken(self):
        a = Record(text="a", id="a", parent_id="b")
        b = Record(text="b", id="b", parent_id="a")
        ordered = normalize_tree([a, b])
        assert len(ordered) == 2
        assert ordered[0].indent_level == 0

    def test_input_not_modified(self):
        record = Record(text="x", id="x", indent_level=3)
        normalize_tree([record])
        assert record.indent_level == 3

    def test_parsed_tree_unchanged(self):
        records = parse("- [ ] A\n\t- [ ] B\n\t\t- [ ] C\n- [ ] D")
        assert normalize_tree(records) == records

    def test_deep_nesting(self):
        depth = sys.getrecursionlimit() + 50
        records = [Record(text="root", id="n0")]
        records += [
            Record(text=f"level {i}", id=f"n{i}", parent_id=f"n{i - 1}") for i in range(1, depth)
        ]
        ordered = normalize_tree(list(reversed(records)))
        assert [r.id for r in ordered] == [r.id for r in records]
        assert ordered[-1].indent_level == depth - 1
