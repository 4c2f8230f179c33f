"""
Tests for versioning/lineage.py - LineageManager save and methodology apply.

Tests cover:
- First save, continuation, explicit and one-shot new lineages
- Version contiguity for arbitrary save sequences
- Blank content rejection
- Title derivation
- apply_methodology: success, transform errors, blank output, cancellation
"""

import random

import pytest

from prompt_forge.exceptions import (
    EmptyContentError,
    NotFoundError,
    TransformFailure,
    ValidationError,
)
from prompt_forge.storage.db import connect, get_methodology_by_name
from prompt_forge.storage.migrations import run_migrations
from prompt_forge.storage.models import ChangeKind, MethodologyKind, MethodologyRecord
from prompt_forge.storage.queries import by_lineage, history
from prompt_forge.versioning.lineage import LineageManager, derive_title


@pytest.fixture
def conn(tmp_path):
    with connect(tmp_path / "forge.db") as conn:
        run_migrations(conn)
        yield conn


@pytest.fixture
def manager(conn):
    return LineageManager(conn)


@pytest.fixture
def methodology(conn):
    return get_methodology_by_name(conn, "narrative_smuggling")


def _kinds(conn) -> list[str]:
    rows = conn.execute("SELECT change_type FROM prompts ORDER BY id").fetchall()
    return [row[0] for row in rows]


# ============================================================================
# Titles
# ============================================================================


class TestDeriveTitle:
    def test_first_line_only(self):
        assert derive_title("Short line\nsecond line") == "Short line"

    def test_exactly_max_length_is_not_truncated(self):
        assert derive_title("x" * 50) == "x" * 50

    def test_long_line_truncated_with_ellipsis(self):
        assert derive_title("y" * 51) == "y" * 50 + "..."

    def test_custom_max_length(self):
        assert derive_title("abcdef", max_length=3) == "abc..."


# ============================================================================
# save()
# ============================================================================


def test_first_save_is_initial(manager):
    a = manager.save("A")

    assert a.change_kind is ChangeKind.INITIAL
    assert a.version_number == 1
    assert a.parent_id is None
    assert a.lineage_root_id == a.id
    assert a.title == "A"


def test_second_save_continues_lineage(manager):
    a = manager.save("A")
    b = manager.save("B")

    assert b.change_kind is ChangeKind.MANUAL_EDIT
    assert b.version_number == 2
    assert b.parent_id == a.id
    assert b.lineage_root_id == a.id


def test_new_lineage_after_existing_records(conn, manager):
    a = manager.save("A")
    manager.save("B")

    c = manager.save("C", new_lineage=True)

    assert c.change_kind is ChangeKind.INITIAL
    assert c.version_number == 1
    assert c.lineage_root_id == c.id
    assert [r.content for r in by_lineage(conn, a.id)] == ["A", "B"]


def test_start_new_lineage_is_consumed_by_next_save(manager):
    manager.save("A")
    manager.start_new_lineage()
    assert manager.new_lineage_pending

    c = manager.save("C")
    d = manager.save("D")

    assert c.change_kind is ChangeKind.INITIAL
    assert not manager.new_lineage_pending
    assert d.parent_id == c.id
    assert d.lineage_root_id == c.id


def test_failed_save_keeps_new_lineage_pending(manager):
    manager.save("A")
    manager.start_new_lineage()

    with pytest.raises(EmptyContentError):
        manager.save("   ")

    assert manager.new_lineage_pending


def test_save_continues_most_recent_record_store_wide(manager):
    a = manager.save("A")
    c = manager.save("C", new_lineage=True)

    d = manager.save("D")

    assert d.lineage_root_id == c.id
    assert d.lineage_root_id != a.id


def test_save_into_explicit_lineage(manager):
    a = manager.save("A")
    b = manager.save("B")
    manager.save("C", new_lineage=True)

    e = manager.save("E", lineage_root_id=a.id)

    assert e.parent_id == b.id
    assert e.version_number == 3
    assert e.lineage_root_id == a.id


def test_save_into_unknown_lineage_raises(conn, manager):
    manager.save("A")

    with pytest.raises(NotFoundError):
        manager.save("B", lineage_root_id=999)

    assert len(history(conn, 10)) == 1


@pytest.mark.parametrize("content", ["", " ", "\n\n", "\t "])
def test_blank_save_writes_nothing(conn, manager, content):
    with pytest.raises(ValidationError):
        manager.save(content)

    assert conn.execute("SELECT COUNT(*) FROM prompts").fetchone()[0] == 0


def test_save_stores_metadata_and_truncated_title(manager):
    record = manager.save("z" * 80 + "\nbody", metadata={"model": "gpt-4o-mini"})

    assert record.title == "z" * 50 + "..."
    assert record.metadata == {"model": "gpt-4o-mini"}


def test_custom_title_length(conn):
    record = LineageManager(conn, title_max_length=5).save("Hello world")

    assert record.title == "Hello..."


def test_versions_are_contiguous_for_any_save_sequence(conn, manager):
    rng = random.Random(1234)

    for i in range(60):
        if rng.random() < 0.2:
            manager.start_new_lineage()
        manager.save(f"revision {i}")

    roots = conn.execute(
        "SELECT id FROM prompts WHERE change_type = 'initial'"
    ).fetchall()
    assert roots

    for (root_id,) in roots:
        records = by_lineage(conn, root_id)
        assert [r.version_number for r in records] == list(range(1, len(records) + 1))
        assert records[0].parent_id is None
        for parent, child in zip(records, records[1:]):
            assert child.parent_id == parent.id
            assert child.lineage_root_id == root_id


# ============================================================================
# apply_methodology()
# ============================================================================


def test_apply_methodology_stores_checkpoint_and_result(conn, manager, methodology):
    manager.save("A")
    progress = []

    def transform(content, applied, on_progress):
        assert applied.id == methodology.id
        on_progress("Once upon")
        on_progress("Once upon a time")
        return f"Once upon a time: {content}"

    result = manager.apply_methodology(
        "B", methodology, transform, on_progress=progress.append
    )

    assert result.change_kind is ChangeKind.METHODOLOGY_APPLY
    assert result.methodology_id == methodology.id
    assert result.content == "Once upon a time: B"
    assert result.version_number == 3
    assert progress == ["Once upon", "Once upon a time"]
    assert _kinds(conn) == ["initial", "manual_edit", "methodology_apply"]

    checkpoint = by_lineage(conn, result.lineage_root_id)[1]
    assert checkpoint.content == "B"
    assert result.parent_id == checkpoint.id


def test_apply_methodology_runs_transform_outside_transaction(conn, manager, methodology):
    manager.save("A")
    seen = []

    def transform(content, applied, on_progress):
        seen.append(conn.in_transaction)
        return "transformed"

    manager.apply_methodology("B", methodology, transform)

    assert seen == [False]


def test_apply_methodology_on_empty_store_checkpoints_as_root(conn, manager, methodology):
    result = manager.apply_methodology(
        "A", methodology, lambda content, m, cb: content.upper()
    )

    assert _kinds(conn) == ["initial", "methodology_apply"]
    assert result.version_number == 2


def test_failing_transform_keeps_only_checkpoint(conn, manager, methodology):
    manager.save("A")

    def transform(content, applied, on_progress):
        raise ConnectionError("provider unavailable")

    with pytest.raises(TransformFailure) as exc_info:
        manager.apply_methodology("B", methodology, transform)

    assert _kinds(conn) == ["initial", "manual_edit"]
    checkpoint = history(conn, 1)[0]
    assert exc_info.value.checkpoint_id == checkpoint.id
    assert checkpoint.content == "B"
    assert isinstance(exc_info.value.__cause__, ConnectionError)


@pytest.mark.parametrize("output", ["", "   ", None])
def test_blank_transform_output_is_a_failure(conn, manager, methodology, output):
    manager.save("A")

    with pytest.raises(TransformFailure, match="returned no text"):
        manager.apply_methodology("B", methodology, lambda c, m, cb: output)

    assert _kinds(conn) == ["initial", "manual_edit"]


def test_cancelled_transform_propagates_and_writes_nothing_more(
    conn, manager, methodology
):
    manager.save("A")

    def transform(content, applied, on_progress):
        raise KeyboardInterrupt

    with pytest.raises(KeyboardInterrupt):
        manager.apply_methodology("B", methodology, transform)

    assert _kinds(conn) == ["initial", "manual_edit"]
    assert not conn.in_transaction


def test_apply_blank_content_writes_nothing(conn, manager, methodology):
    with pytest.raises(EmptyContentError):
        manager.apply_methodology(" ", methodology, lambda c, m, cb: "x")

    assert _kinds(conn) == []


def test_apply_unknown_methodology_writes_nothing(conn, manager):
    ghost = MethodologyRecord(
        id=999, name="ghost", path="x/ghost", kind=MethodologyKind.INTENT
    )
    calls = []

    with pytest.raises(NotFoundError):
        manager.apply_methodology("A", ghost, lambda c, m, cb: calls.append(c) or c)

    assert calls == []
    assert _kinds(conn) == []
