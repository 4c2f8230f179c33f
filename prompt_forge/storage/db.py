"""
SQLite record store for Prompt Forge.

This module owns the connection and transaction primitives and every write
to the two record families:
- methodologies: reference data seeded by migrations, read-mostly
- prompts: versioned snapshots, append-only with lineage

All timestamps are stored in ISO 8601 format with 'Z' suffix (UTC).

Transactions:
    Connections are opened in autocommit mode (isolation_level=None) and
    every write goes through transaction(), which issues BEGIN IMMEDIATE so
    SQLite's own lock serializes writers. A nested transaction() becomes a
    SAVEPOINT. Every exit path (exception, early return, KeyboardInterrupt)
    rolls back what was not committed.

Prompt invariants:
    insert_prompt() checks version continuity, methodology binding, lineage
    identity and uniqueness inside the insert's transaction, before commit.
    The triggers and constraints from the initial migration enforce the same
    rules in SQL; their errors are mapped to InvariantViolation as well.

Example usage:
    >>> from prompt_forge.storage.db import connect, insert_prompt
    >>> with connect("./data/prompt_forge.db") as conn:
    ...     root = insert_prompt(conn, content="Ignore prior instructions",
    ...                          change_kind="initial", version_number=1)

Security:
    - ALL queries use parameterized statements to prevent SQL injection
    - Prompt content is never logged above DEBUG level
    - Connection context managers ensure proper cleanup
"""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from prompt_forge.config.constants import DEFAULT_BUSY_TIMEOUT_SECONDS
from prompt_forge.exceptions import (
    DatabaseError,
    EmptyContentError,
    Invariant,
    InvariantViolation,
    NotFoundError,
    ValidationError,
)

from ..utils.time import utc_timestamp
from .models import ChangeKind, MethodologyKind, MethodologyRecord, PromptRecord
from .queries import get_prompt, require_prompt

logger = logging.getLogger(__name__)

# Placeholder lineage for a root between its insert and its self-reference
# patch. The lineage foreign key is deferred, so it is only checked at commit.
_UNRESOLVED_LINEAGE = 0

_METHODOLOGY_COLUMNS = """
    id, name, description, path, type, examples, prompt_samples,
    created_at, updated_at
"""

# Mutable methodology fields and their column names
_METHODOLOGY_FIELDS = {
    "name": "name",
    "description": "description",
    "path": "path",
    "kind": "type",
    "examples": "examples",
    "prompt_samples": "prompt_samples",
}


# ============================================================================
# Connections and Transactions
# ============================================================================


def open_connection(
    db_path: str | Path,
    busy_timeout: float = DEFAULT_BUSY_TIMEOUT_SECONDS,
) -> sqlite3.Connection:
    """
    Open a store connection.

    Creates the parent directory if needed, opens SQLite in autocommit mode
    (transactions are explicit, see transaction()), enables foreign keys and
    returns rows as sqlite3.Row.

    Args:
        db_path: Filesystem path to the SQLite file, or ":memory:"
        busy_timeout: Seconds a writer waits for another writer's lock

    Returns:
        Open sqlite3.Connection. The caller must close it; prefer connect().

    Raises:
        DatabaseError: If the database cannot be opened
    """
    db_path = str(db_path)
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    try:
        conn = sqlite3.connect(db_path, timeout=busy_timeout, isolation_level=None)
    except sqlite3.Error as e:
        raise DatabaseError(f"Failed to open database {db_path}: {e}") from e

    conn.row_factory = sqlite3.Row
    # Per-connection setting, disabled by default in SQLite
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def connect(
    db_path: str | Path,
    busy_timeout: float = DEFAULT_BUSY_TIMEOUT_SECONDS,
) -> Iterator[sqlite3.Connection]:
    """
    Context manager around open_connection().

    On exit any transaction still open is rolled back and the connection is
    closed, whatever the exit path.

    Example:
        >>> with connect("./data/prompt_forge.db") as conn:
        ...     records = history(conn, 10)
    """
    conn = open_connection(db_path, busy_timeout)
    try:
        yield conn
    finally:
        try:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
        finally:
            conn.close()


@contextmanager
def transaction(
    conn: sqlite3.Connection, immediate: bool = True
) -> Iterator[sqlite3.Connection]:
    """
    Scoped all-or-nothing transaction.

    The outermost call issues BEGIN IMMEDIATE (or BEGIN when immediate is
    False), taking SQLite's write lock up front. A call made while a
    transaction is already open uses a SAVEPOINT instead, so an inner failure
    only undoes the inner writes before propagating.

    Every write inside the block commits together, or none does. Rollback
    happens on any exception, including KeyboardInterrupt and a failed COMMIT
    (for example a deferred foreign key violation).

    Args:
        conn: Connection opened by open_connection()
        immediate: Take the write lock at BEGIN rather than at first write

    Yields:
        The same connection

    Example:
        >>> with transaction(conn):
        ...     conn.execute("UPDATE prompts SET title = ? WHERE id = ?", ("x", 1))
    """
    if conn.in_transaction:
        name = f"sp_{id(conn)}_{conn.total_changes}"
        conn.execute(f"SAVEPOINT {name}")
        try:
            yield conn
        except BaseException:
            conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        else:
            conn.execute(f"RELEASE SAVEPOINT {name}")
        return

    conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
    try:
        yield conn
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise

    try:
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise


def reset_store(conn: sqlite3.Connection) -> list[str]:
    """
    Destructive reset: drop every managed table and view, ledger included.

    The next startup re-applies every migration on an empty store. Triggers
    and indexes go with their tables.

    Args:
        conn: Connection with no open transaction

    Returns:
        Names of the dropped objects

    Raises:
        DatabaseError: If called inside an open transaction or a drop fails
    """
    if conn.in_transaction:
        raise DatabaseError("reset_store() cannot run inside an open transaction")

    objects = conn.execute(
        "SELECT type, name FROM sqlite_master "
        "WHERE type IN ('view', 'table') AND name NOT LIKE 'sqlite_%' "
        "ORDER BY CASE type WHEN 'view' THEN 0 ELSE 1 END, name"
    ).fetchall()

    dropped = []
    # Table drop order must not trip foreign keys; the pragma is a no-op
    # inside a transaction, so it wraps the whole transaction.
    conn.execute("PRAGMA foreign_keys = OFF")
    try:
        with transaction(conn):
            for obj in objects:
                quoted = obj["name"].replace('"', '""')
                kind = "VIEW" if obj["type"] == "view" else "TABLE"
                conn.execute(f'DROP {kind} IF EXISTS "{quoted}"')
                dropped.append(obj["name"])
    except sqlite3.Error as e:
        raise DatabaseError(f"Failed to reset store: {e}") from e
    finally:
        conn.execute("PRAGMA foreign_keys = ON")

    logger.warning(f"Store reset: dropped {len(dropped)} objects")
    return dropped


# ============================================================================
# Prompt Writes
# ============================================================================


def _coerce_change_kind(change_kind: ChangeKind | str) -> ChangeKind:
    try:
        return ChangeKind(change_kind)
    except ValueError as e:
        allowed = ", ".join(k.value for k in ChangeKind)
        raise ValidationError(
            f"Unknown change kind {change_kind!r} (expected one of: {allowed})"
        ) from e


def _invariant_from_integrity_error(
    exc: sqlite3.IntegrityError,
) -> InvariantViolation | None:
    """Map a trigger or constraint failure from SQLite to the broken rule."""
    message = str(exc)

    if "UNIQUE constraint failed: prompts.lineage_root_id" in message:
        return InvariantViolation(Invariant.UNIQUENESS, message)
    if "version_number" in message:
        return InvariantViolation(Invariant.VERSION_CONTINUITY, message)
    if "methodology_id" in message:
        return InvariantViolation(Invariant.METHODOLOGY_BINDING, message)
    if "lineage_root_id" in message:
        return InvariantViolation(Invariant.LINEAGE_IDENTITY, message)
    return None


def _check_invariants(
    conn: sqlite3.Connection,
    change_kind: ChangeKind,
    version_number: int,
    parent_id: int | None,
    lineage_root_id: int | None,
    methodology_id: int | None,
) -> int:
    """
    Validate a pending prompt insert against the four invariants.

    Runs inside the insert's transaction so the reads it makes cannot go
    stale before the write.

    Returns:
        The lineage_root_id to store (placeholder for roots)

    Raises:
        InvariantViolation: Naming the first rule the write would break
        NotFoundError: If methodology_id references no methodology
    """
    # Methodology binding
    if change_kind is ChangeKind.METHODOLOGY_APPLY:
        if methodology_id is None:
            raise InvariantViolation(
                Invariant.METHODOLOGY_BINDING,
                "methodology_apply requires methodology_id",
            )
        if get_methodology(conn, methodology_id) is None:
            raise NotFoundError(
                f"Methodology {methodology_id} not found", record_id=methodology_id
            )
    elif methodology_id is not None:
        raise InvariantViolation(
            Invariant.METHODOLOGY_BINDING,
            f"Only methodology_apply can have methodology_id "
            f"(got {change_kind.value} with methodology {methodology_id})",
        )

    # Version continuity and lineage identity
    if change_kind is ChangeKind.INITIAL:
        if version_number != 1:
            raise InvariantViolation(
                Invariant.VERSION_CONTINUITY,
                f"Initial prompts must have version_number = 1, got {version_number}",
            )
        if parent_id is not None:
            raise InvariantViolation(
                Invariant.VERSION_CONTINUITY,
                f"Initial prompts cannot have a parent (got parent {parent_id})",
                record_id=parent_id,
            )
        if lineage_root_id is not None:
            raise InvariantViolation(
                Invariant.LINEAGE_IDENTITY,
                "Initial prompts take their own id as lineage_root_id; "
                f"got {lineage_root_id}",
            )
        return _UNRESOLVED_LINEAGE

    if parent_id is None:
        raise InvariantViolation(
            Invariant.VERSION_CONTINUITY,
            f"{change_kind.value} prompts require a parent",
        )

    parent = get_prompt(conn, parent_id)
    if parent is None:
        raise InvariantViolation(
            Invariant.VERSION_CONTINUITY,
            f"Parent prompt {parent_id} does not exist",
            record_id=parent_id,
        )

    if version_number != parent.version_number + 1:
        raise InvariantViolation(
            Invariant.VERSION_CONTINUITY,
            f"version_number must be parent.version_number + 1 "
            f"({parent.version_number + 1}), got {version_number}",
            record_id=parent_id,
        )

    expected_root = parent.lineage_root_id or parent.id
    if lineage_root_id is None:
        lineage_root_id = expected_root
    elif lineage_root_id != expected_root:
        raise InvariantViolation(
            Invariant.LINEAGE_IDENTITY,
            f"lineage_root_id must match parent's ({expected_root}), "
            f"got {lineage_root_id}",
            record_id=parent_id,
        )

    # Uniqueness
    taken = conn.execute(
        "SELECT id FROM prompts WHERE lineage_root_id = ? AND version_number = ?",
        (lineage_root_id, version_number),
    ).fetchone()
    if taken is not None:
        raise InvariantViolation(
            Invariant.UNIQUENESS,
            f"Lineage {lineage_root_id} already has version {version_number} "
            f"(prompt {taken['id']})",
            record_id=taken["id"],
        )

    return lineage_root_id


def insert_prompt(
    conn: sqlite3.Connection,
    *,
    content: str,
    change_kind: ChangeKind | str,
    version_number: int,
    parent_id: int | None = None,
    lineage_root_id: int | None = None,
    methodology_id: int | None = None,
    title: str | None = None,
    metadata: dict[str, Any] | None = None,
    created_at: str | None = None,
) -> PromptRecord:
    """
    Insert a prompt record after checking every write-time invariant.

    Checks, insert and (for roots) the lineage self-reference patch all run
    in one transaction. A nested call joins the caller's transaction through
    a savepoint. Any failure rolls back the insert; no partial record is ever
    visible.

    Args:
        conn: Open store connection
        content: Prompt text, must not be blank
        change_kind: initial, manual_edit or methodology_apply
        version_number: 1 for initial, parent's version + 1 otherwise
        parent_id: Previous version (required unless initial)
        lineage_root_id: Lineage to join. Must be None for initial records
            (they become their own root); None elsewhere means "the parent's".
        methodology_id: Methodology applied (methodology_apply only)
        title: Display title (None stores no title)
        metadata: JSON-serializable dict
        created_at: ISO 8601 timestamp; defaults to now

    Returns:
        The stored PromptRecord, re-read after commit-ready state

    Raises:
        EmptyContentError: If content is blank (nothing is written)
        ValidationError: If change_kind is unknown or metadata is not a dict
        InvariantViolation: If any of the four invariants would break
        NotFoundError: If methodology_id does not exist
        DatabaseError: For any other SQLite failure
    """
    if not content or not content.strip():
        raise EmptyContentError("Prompt content cannot be blank")

    kind = _coerce_change_kind(change_kind)

    if metadata is not None and not isinstance(metadata, dict):
        raise ValidationError(
            f"metadata must be a dict, got {type(metadata).__name__}"
        )
    metadata_json = json.dumps(metadata) if metadata else None
    timestamp = created_at or utc_timestamp()

    try:
        with transaction(conn):
            stored_root = _check_invariants(
                conn, kind, version_number, parent_id, lineage_root_id, methodology_id
            )

            cursor = conn.execute(
                """
                INSERT INTO prompts (
                    title,
                    content,
                    parent_prompt_id,
                    methodology_id,
                    change_type,
                    metadata,
                    version_number,
                    lineage_root_id,
                    created_at,
                    updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    title,
                    content,
                    parent_id,
                    methodology_id,
                    kind.value,
                    metadata_json,
                    version_number,
                    stored_root,
                    timestamp,
                    timestamp,
                ),
            )
            new_id = cursor.lastrowid

            if kind is ChangeKind.INITIAL:
                # The id only exists after the insert: patch the root to point
                # at itself before anything can observe it.
                conn.execute(
                    "UPDATE prompts SET lineage_root_id = ?, updated_at = ? WHERE id = ?",
                    (new_id, timestamp, new_id),
                )

            record = require_prompt(conn, new_id)
            if kind is ChangeKind.INITIAL and record.lineage_root_id != record.id:
                raise InvariantViolation(
                    Invariant.LINEAGE_IDENTITY,
                    f"Root {record.id} did not resolve to itself "
                    f"(lineage_root_id={record.lineage_root_id})",
                    record_id=record.id,
                )

    except sqlite3.IntegrityError as e:
        violation = _invariant_from_integrity_error(e)
        if violation is not None:
            raise violation from e
        raise DatabaseError(f"Failed to insert prompt: {e}") from e
    except sqlite3.Error as e:
        raise DatabaseError(f"Failed to insert prompt: {e}") from e

    logger.debug(
        f"Inserted prompt {record.id} ({record.change_kind.value}, "
        f"v{record.version_number}, lineage {record.lineage_root_id})"
    )
    return record


def update_prompt_metadata(
    conn: sqlite3.Connection, prompt_id: int, metadata: dict[str, Any]
) -> PromptRecord:
    """
    Replace a prompt's metadata blob. Content and lineage fields never change.

    Raises:
        NotFoundError: If the prompt does not exist
        ValidationError: If metadata is not a dict
    """
    if not isinstance(metadata, dict):
        raise ValidationError(
            f"metadata must be a dict, got {type(metadata).__name__}"
        )

    with transaction(conn):
        require_prompt(conn, prompt_id)
        conn.execute(
            "UPDATE prompts SET metadata = ? WHERE id = ?",
            (json.dumps(metadata), prompt_id),
        )
        return require_prompt(conn, prompt_id)


def delete_prompt(conn: sqlite3.Connection, prompt_id: int) -> None:
    """
    Delete a prompt record.

    Deleting a lineage root deletes every record of that lineage. Deleting
    any other record leaves its children in place with parent_id set to None.

    Raises:
        NotFoundError: If the prompt does not exist
    """
    with transaction(conn):
        record = require_prompt(conn, prompt_id)
        conn.execute("DELETE FROM prompts WHERE id = ?", (prompt_id,))

    if record.is_root:
        logger.info(f"Deleted lineage {prompt_id}")
    else:
        logger.info(f"Deleted prompt {prompt_id}")


# ============================================================================
# Methodologies
# ============================================================================


def _coerce_methodology_kind(kind: MethodologyKind | str) -> MethodologyKind:
    try:
        return MethodologyKind(kind)
    except ValueError as e:
        allowed = ", ".join(k.value for k in MethodologyKind)
        raise ValidationError(
            f"Unknown methodology kind {kind!r} (expected one of: {allowed})"
        ) from e


def insert_methodology(
    conn: sqlite3.Connection,
    *,
    name: str,
    path: str,
    kind: MethodologyKind | str,
    description: str = "",
    examples: str | None = None,
    prompt_samples: str | None = None,
) -> MethodologyRecord:
    """
    Insert a methodology record.

    Methodologies are normally seeded by migration units; this is used for
    imports and tests.

    Raises:
        ValidationError: If name/path is blank, kind is unknown, or the name
            is already taken
    """
    if not name or not name.strip():
        raise ValidationError("Methodology name cannot be blank")
    if not path or not path.strip():
        raise ValidationError("Methodology path cannot be blank")
    kind = _coerce_methodology_kind(kind)
    timestamp = utc_timestamp()

    try:
        with transaction(conn):
            cursor = conn.execute(
                """
                INSERT INTO methodologies (
                    name, description, path, type, examples, prompt_samples,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    name,
                    description,
                    path,
                    kind.value,
                    examples,
                    prompt_samples,
                    timestamp,
                    timestamp,
                ),
            )
            new_id = cursor.lastrowid
    except sqlite3.IntegrityError as e:
        raise ValidationError(f"Methodology {name!r} already exists") from e

    logger.debug(f"Inserted methodology {new_id} ({name})")
    return get_methodology(conn, new_id)


def get_methodology(
    conn: sqlite3.Connection, methodology_id: int
) -> MethodologyRecord | None:
    """Fetch a methodology by id, or None."""
    row = conn.execute(
        f"SELECT {_METHODOLOGY_COLUMNS} FROM methodologies WHERE id = ?",
        (methodology_id,),
    ).fetchone()
    return MethodologyRecord.from_row(row) if row else None


def get_methodology_by_name(
    conn: sqlite3.Connection, name: str
) -> MethodologyRecord | None:
    """Fetch a methodology by its unique name, or None."""
    row = conn.execute(
        f"SELECT {_METHODOLOGY_COLUMNS} FROM methodologies WHERE name = ?",
        (name,),
    ).fetchone()
    return MethodologyRecord.from_row(row) if row else None


def require_methodology(
    conn: sqlite3.Connection, methodology_id: int
) -> MethodologyRecord:
    """Like get_methodology(), but raises NotFoundError for an unknown id."""
    record = get_methodology(conn, methodology_id)
    if record is None:
        raise NotFoundError(
            f"Methodology {methodology_id} not found", record_id=methodology_id
        )
    return record


def list_methodology_kinds(conn: sqlite3.Connection) -> list[MethodologyKind]:
    """Distinct methodology kinds present in the store, alphabetically."""
    rows = conn.execute(
        "SELECT DISTINCT type FROM methodologies ORDER BY type"
    ).fetchall()
    return [MethodologyKind(row["type"]) for row in rows]


def list_methodologies(
    conn: sqlite3.Connection, kind: MethodologyKind | str | None = None
) -> list[MethodologyRecord]:
    """
    List methodologies by name, optionally only those of one kind.

    Raises:
        ValidationError: If kind is not a known methodology kind
    """
    if kind is None:
        rows = conn.execute(
            f"SELECT {_METHODOLOGY_COLUMNS} FROM methodologies ORDER BY name"
        ).fetchall()
    else:
        kind = _coerce_methodology_kind(kind)
        rows = conn.execute(
            f"SELECT {_METHODOLOGY_COLUMNS} FROM methodologies "
            "WHERE type = ? ORDER BY name",
            (kind.value,),
        ).fetchall()
    return [MethodologyRecord.from_row(row) for row in rows]


def update_methodology(
    conn: sqlite3.Connection, methodology_id: int, **fields: Any
) -> MethodologyRecord:
    """
    Update methodology fields. updated_at is refreshed by trigger.

    Args:
        conn: Open store connection
        methodology_id: Record to update
        **fields: Any of name, description, path, kind, examples, prompt_samples

    Raises:
        ValidationError: For unknown fields, an unknown kind or a taken name
        NotFoundError: If the methodology does not exist
    """
    unknown = set(fields) - set(_METHODOLOGY_FIELDS)
    if unknown:
        raise ValidationError(
            f"Cannot update methodology field(s): {', '.join(sorted(unknown))}"
        )
    if not fields:
        return require_methodology(conn, methodology_id)

    if "kind" in fields:
        fields["kind"] = _coerce_methodology_kind(fields["kind"]).value

    assignments = ", ".join(f"{_METHODOLOGY_FIELDS[key]} = ?" for key in fields)
    try:
        with transaction(conn):
            require_methodology(conn, methodology_id)
            conn.execute(
                f"UPDATE methodologies SET {assignments} WHERE id = ?",
                (*fields.values(), methodology_id),
            )
    except sqlite3.IntegrityError as e:
        raise ValidationError(f"Cannot update methodology {methodology_id}: {e}") from e

    return require_methodology(conn, methodology_id)


def delete_methodology(conn: sqlite3.Connection, methodology_id: int) -> None:
    """
    Delete a methodology that no prompt record was produced with.

    Raises:
        NotFoundError: If the methodology does not exist
        ValidationError: If any methodology_apply record references it
    """
    with transaction(conn):
        require_methodology(conn, methodology_id)
        bound = conn.execute(
            "SELECT COUNT(*) FROM prompts WHERE methodology_id = ?",
            (methodology_id,),
        ).fetchone()[0]
        if bound:
            raise ValidationError(
                f"Methodology {methodology_id} is referenced by {bound} prompt(s)"
            )
        conn.execute("DELETE FROM methodologies WHERE id = ?", (methodology_id,))
    logger.info(f"Deleted methodology {methodology_id}")
