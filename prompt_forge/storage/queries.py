"""
Read-side helpers for prompt records.

All functions take an open connection (row_factory = sqlite3.Row, as set by
storage.db.open_connection) and run outside explicit transactions, so reads
never block other reads.

Ordering rules:
- "Most recent" means created_at DESC, then id DESC (timestamps have
  one-second resolution, ids break ties)
- A lineage is listed by version_number ASC
"""

import sqlite3
from typing import Any

from prompt_forge.exceptions import NotFoundError, ValidationError

from .models import PromptRecord

_PROMPT_COLUMNS = """
    id, title, content, parent_prompt_id, methodology_id, change_type,
    metadata, version_number, lineage_root_id, created_at, updated_at
"""


def get_prompt(conn: sqlite3.Connection, prompt_id: int) -> PromptRecord | None:
    """
    Fetch a single prompt record by id.

    Args:
        conn: Open store connection
        prompt_id: Record id

    Returns:
        PromptRecord, or None if no record has that id
    """
    row = conn.execute(
        f"SELECT {_PROMPT_COLUMNS} FROM prompts WHERE id = ?",
        (prompt_id,),
    ).fetchone()
    return PromptRecord.from_row(row) if row else None


def require_prompt(conn: sqlite3.Connection, prompt_id: int) -> PromptRecord:
    """Like get_prompt(), but raises NotFoundError for an unknown id."""
    record = get_prompt(conn, prompt_id)
    if record is None:
        raise NotFoundError(f"Prompt {prompt_id} not found", record_id=prompt_id)
    return record


def get_latest_prompt(
    conn: sqlite3.Connection, lineage_root_id: int | None = None
) -> PromptRecord | None:
    """
    Fetch the most recently created prompt record.

    Args:
        conn: Open store connection
        lineage_root_id: Restrict the lookup to one lineage. None searches
            the whole store.

    Returns:
        Latest PromptRecord, or None if there is nothing to return
    """
    if lineage_root_id is None:
        row = conn.execute(
            f"SELECT {_PROMPT_COLUMNS} FROM prompts "
            "ORDER BY created_at DESC, id DESC LIMIT 1"
        ).fetchone()
    else:
        row = conn.execute(
            f"SELECT {_PROMPT_COLUMNS} FROM prompts WHERE lineage_root_id = ? "
            "ORDER BY version_number DESC, id DESC LIMIT 1",
            (lineage_root_id,),
        ).fetchone()
    return PromptRecord.from_row(row) if row else None


def history(conn: sqlite3.Connection, limit: int) -> list[PromptRecord]:
    """
    List the most recent prompt records store-wide.

    Args:
        conn: Open store connection
        limit: Maximum number of records (must be positive)

    Returns:
        Records ordered newest first (created_at DESC, id DESC)

    Raises:
        ValidationError: If limit is not a positive integer

    Example:
        >>> [r.version_number for r in history(conn, 3)]
        [3, 2, 1]
    """
    if limit <= 0:
        raise ValidationError(f"History limit must be positive, got: {limit}")

    rows = conn.execute(
        f"SELECT {_PROMPT_COLUMNS} FROM prompts "
        "ORDER BY created_at DESC, id DESC LIMIT ?",
        (limit,),
    ).fetchall()
    return [PromptRecord.from_row(row) for row in rows]


def by_lineage(conn: sqlite3.Connection, root_id: int) -> list[PromptRecord]:
    """
    Return the full history of one lineage, oldest version first.

    Args:
        conn: Open store connection
        root_id: Id of the lineage root

    Returns:
        Every record whose lineage_root_id is root_id, by version_number ASC

    Raises:
        NotFoundError: If no lineage has that root
    """
    rows = conn.execute(
        f"SELECT {_PROMPT_COLUMNS} FROM prompts WHERE lineage_root_id = ? "
        "ORDER BY version_number ASC",
        (root_id,),
    ).fetchall()
    if not rows:
        raise NotFoundError(f"Lineage {root_id} not found", record_id=root_id)
    return [PromptRecord.from_row(row) for row in rows]


def latest_per_lineage(conn: sqlite3.Connection) -> list[PromptRecord]:
    """
    Return the highest version of every lineage.

    Built on the latest_prompts view created by the initial migration.
    Lineages are ordered by the creation time of their latest version,
    newest first.
    """
    rows = conn.execute(
        """
        SELECT p.id, p.title, p.content, p.parent_prompt_id, p.methodology_id,
               p.change_type, p.metadata, p.version_number, p.lineage_root_id,
               p.created_at, p.updated_at
        FROM prompts p
        JOIN latest_prompts l
          ON p.lineage_root_id = l.lineage_root_id
         AND p.version_number = l.latest_version
        ORDER BY p.created_at DESC, p.id DESC
        """
    ).fetchall()
    return [PromptRecord.from_row(row) for row in rows]


def history_with_context(
    conn: sqlite3.Connection, root_id: int | None = None
) -> list[dict[str, Any]]:
    """
    Rows of the prompt_history view: each record with its parent's title and
    the applied methodology's name, kind and path.

    Args:
        conn: Open store connection
        root_id: Restrict to one lineage. None returns every lineage.

    Returns:
        List of dicts ordered by lineage, then version
    """
    if root_id is None:
        rows = conn.execute("SELECT * FROM prompt_history").fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM prompt_history WHERE lineage_root_id = ? "
            "ORDER BY version_number",
            (root_id,),
        ).fetchall()
    return [dict(row) for row in rows]
