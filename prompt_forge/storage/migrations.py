"""
Schema migrations for the Prompt Forge store.

Migration units are plain .sql files named YYYYMMDD_HHMMSS_description.sql,
listed in an index.json next to them. The bundled units live in
storage/schema/.

Components:
    MigrationRegistry: Reads index.json and orders units by timestamp prefix
    MigrationEngine: Applies pending units one transaction at a time and
        records each in the `migrations` ledger table
    run_migrations / init_store: Startup entry points

Each unit is all-or-nothing: its statements and its ledger row commit
together or not at all. A unit that fails is reported by name with its cause,
then the operator callback decides between a destructive reset (the next
start re-applies everything on an empty store) and the configured failure
policy ("continue" with the next unit, or "halt").

Example:
    >>> with connect("./data/prompt_forge.db") as conn:
    ...     result = run_migrations(conn)
    >>> result.success
    True
"""

import json
import logging
import re
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Literal

from prompt_forge.config.constants import MIGRATION_INDEX_FILENAME
from prompt_forge.config.schema import ForgeConfig
from prompt_forge.exceptions import DatabaseError, MigrationFailure, MigrationIndexError

from .db import connect, reset_store, transaction

logger = logging.getLogger(__name__)

BUNDLED_MIGRATIONS_DIR = Path(__file__).parent / "schema"

_TIMESTAMP_PREFIX = re.compile(r"^(\d{8}_\d{6})")
_LINE_COMMENT = re.compile(r"--[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_FIRST_WORD = re.compile(r"[A-Za-z]+")

# Units run inside the engine's transaction and must not manage their own
_TRANSACTION_KEYWORDS = {"BEGIN", "COMMIT", "END", "ROLLBACK", "SAVEPOINT", "RELEASE"}

FailurePolicy = Literal["continue", "halt"]
ConfirmReset = Callable[[MigrationFailure], bool]


class MigrationState(str, Enum):
    """Lifecycle of one unit within a run."""

    PENDING = "pending"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"


@dataclass(frozen=True)
class MigrationUnit:
    """One named, immutable schema or data change."""

    name: str
    path: Path

    @property
    def sort_key(self) -> str:
        """Timestamp prefix of the name, or "" when it has none."""
        match = _TIMESTAMP_PREFIX.match(self.name)
        return match.group(1) if match else ""

    def read_sql(self) -> str:
        return self.path.read_text(encoding="utf-8")


@dataclass
class MigrationResult:
    """
    Outcome of one engine run.

    Attributes:
        applied: Units applied by this run, in order
        skipped: Units already in the ledger before the run
        failures: One MigrationFailure per failed unit
        states: Final state of every registry unit, by name
        reset_performed: True if the operator accepted a destructive reset
        halted: True if the run stopped early under the "halt" policy
    """

    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failures: list[MigrationFailure] = field(default_factory=list)
    states: dict[str, MigrationState] = field(default_factory=dict)
    reset_performed: bool = False
    halted: bool = False

    @property
    def success(self) -> bool:
        return not self.failures

    @property
    def failed_units(self) -> list[str]:
        return [failure.unit_name for failure in self.failures]


def _has_sql(fragment: str) -> bool:
    """True if fragment holds anything besides comments and whitespace."""
    stripped = _BLOCK_COMMENT.sub("", _LINE_COMMENT.sub("", fragment))
    return bool(stripped.strip(" \t\r\n;"))


def _leading_keyword(statement: str) -> str:
    """First SQL keyword of a statement, upper-cased, comments skipped."""
    stripped = _BLOCK_COMMENT.sub("", _LINE_COMMENT.sub("", statement))
    match = _FIRST_WORD.search(stripped)
    return match.group(0).upper() if match else ""


def split_sql_statements(sql: str) -> list[str]:
    """
    Split a migration unit into individual statements.

    Cuts at each ';' where sqlite3.complete_statement() says the text so far
    forms a full statement, so semicolons inside string literals, comments
    and CREATE TRIGGER ... BEGIN ... END bodies do not split. Comment-only
    fragments are dropped. A trailing incomplete fragment is kept so SQLite
    reports the syntax error.

    Example:
        >>> split_sql_statements("CREATE TABLE a (x); -- note\\nINSERT INTO a VALUES (';');")
        ['CREATE TABLE a (x);', "-- note\\nINSERT INTO a VALUES (';');"]
    """
    statements = []
    start = 0
    position = sql.find(";")

    while position != -1:
        candidate = sql[start : position + 1]
        if sqlite3.complete_statement(candidate):
            if _has_sql(candidate):
                statements.append(candidate.strip())
            start = position + 1
        position = sql.find(";", position + 1)

    tail = sql[start:]
    if _has_sql(tail):
        statements.append(tail.strip())

    return statements


def get_applied_migrations(conn: sqlite3.Connection) -> set[str]:
    """
    Filenames recorded in the ledger.

    A store with no `migrations` table yet has applied nothing.

    Raises:
        DatabaseError: For any failure other than the missing ledger table
    """
    try:
        rows = conn.execute("SELECT filename FROM migrations").fetchall()
    except sqlite3.OperationalError as e:
        if "no such table" in str(e):
            return set()
        raise DatabaseError(f"Failed to read migration ledger: {e}") from e
    return {row[0] for row in rows}


class MigrationRegistry:
    """
    Ordered list of migration units declared by an index.json.

    The index is a JSON array of unit filenames. Units are ordered by their
    YYYYMMDD_HHMMSS prefix alone; ties and names without a prefix keep their
    index order (names without a prefix sort first).

    Args:
        migrations_dir: Directory holding index.json and the units.
            None means the units bundled with the package.

    Example:
        >>> registry = MigrationRegistry()
        >>> [unit.name for unit in registry.units][:1]
        ['20251110_014400_init.sql']
    """

    def __init__(self, migrations_dir: str | Path | None = None):
        self.migrations_dir = (
            Path(migrations_dir) if migrations_dir else BUNDLED_MIGRATIONS_DIR
        )
        self._units: list[MigrationUnit] | None = None

    @property
    def index_path(self) -> Path:
        return self.migrations_dir / MIGRATION_INDEX_FILENAME

    @property
    def units(self) -> list[MigrationUnit]:
        if self._units is None:
            self._units = self.load()
        return self._units

    def load(self) -> list[MigrationUnit]:
        """
        Read and order the index.

        Raises:
            MigrationIndexError: If index.json is missing, is not valid JSON,
                or is not an array of non-empty strings
        """
        if not self.index_path.exists():
            raise MigrationIndexError(f"Migration index not found: {self.index_path}")

        try:
            names = json.loads(self.index_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise MigrationIndexError(
                f"Invalid JSON in migration index {self.index_path}: {e}"
            ) from e
        except OSError as e:
            raise MigrationIndexError(
                f"Failed to read migration index {self.index_path}: {e}"
            ) from e

        if not isinstance(names, list) or not all(
            isinstance(name, str) and name.strip() for name in names
        ):
            raise MigrationIndexError(
                f"Migration index {self.index_path} must be a JSON array of filenames"
            )

        if len(set(names)) != len(names):
            raise MigrationIndexError(
                f"Migration index {self.index_path} lists a unit more than once"
            )

        units = [MigrationUnit(name, self.migrations_dir / name) for name in names]
        # sorted() is stable: equal prefixes keep index order
        return sorted(units, key=lambda unit: unit.sort_key)

    def pending(self, applied: set[str]) -> list[MigrationUnit]:
        """Units not yet in the ledger, in application order."""
        return [unit for unit in self.units if unit.name not in applied]


class MigrationEngine:
    """
    Applies pending migration units to a store.

    Args:
        conn: Store connection (see storage.db.open_connection)
        registry: Units to apply
        on_failure: Policy after a failure the operator chose not to fix by
            reset. "continue" moves on to the next unit, "halt" stops.
        confirm_reset: Called with each MigrationFailure; returning True
            wipes the store and ends the run. None never resets.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        registry: MigrationRegistry | None = None,
        on_failure: FailurePolicy = "continue",
        confirm_reset: ConfirmReset | None = None,
    ):
        if on_failure not in ("continue", "halt"):
            raise ValueError(f"on_failure must be 'continue' or 'halt', got: {on_failure}")
        self.conn = conn
        self.registry = registry or MigrationRegistry()
        self.on_failure = on_failure
        self.confirm_reset = confirm_reset

    def run(self) -> MigrationResult:
        """
        Apply every pending unit in order.

        When nothing is pending no transaction is opened and the ledger is
        left untouched.

        Returns:
            MigrationResult describing what happened to every unit

        Raises:
            MigrationIndexError: If the registry's index cannot be read
            DatabaseError: If the ledger cannot be read
        """
        result = MigrationResult()
        applied = get_applied_migrations(self.conn)

        for unit in self.registry.units:
            if unit.name in applied:
                result.skipped.append(unit.name)
                result.states[unit.name] = MigrationState.APPLIED
            else:
                result.states[unit.name] = MigrationState.PENDING

        pending = self.registry.pending(applied)
        if not pending:
            logger.debug(f"Store schema is current ({len(result.skipped)} units applied)")
            return result

        logger.info(f"Applying {len(pending)} pending migration(s)")

        for unit in pending:
            result.states[unit.name] = MigrationState.APPLYING
            try:
                self._apply_unit(unit)
            except MigrationFailure as failure:
                result.states[unit.name] = MigrationState.FAILED
                result.failures.append(failure)
                logger.error(str(failure))

                if self._should_reset(failure):
                    reset_store(self.conn)
                    result.reset_performed = True
                    logger.warning(
                        "Store wiped after migration failure; "
                        "all units will be re-applied on next start"
                    )
                    break

                if self.on_failure == "halt":
                    result.halted = True
                    logger.error(f"Halting migrations after {unit.name}")
                    break

                logger.warning(f"Migration {unit.name} failed, continuing...")
                continue

            result.states[unit.name] = MigrationState.APPLIED
            result.applied.append(unit.name)

        return result

    def _apply_unit(self, unit: MigrationUnit) -> None:
        """Run one unit and its ledger row in a single transaction."""
        logger.info(f"Applying migration: {unit.name}")

        try:
            statements = split_sql_statements(unit.read_sql())
        except (OSError, UnicodeDecodeError) as e:
            raise MigrationFailure(unit.name, e) from e

        for statement in statements:
            keyword = _leading_keyword(statement)
            if keyword in _TRANSACTION_KEYWORDS:
                raise MigrationFailure(
                    unit.name,
                    ValueError(f"{keyword} is not allowed inside a migration unit"),
                )

        try:
            with transaction(self.conn):
                for statement in statements:
                    self.conn.execute(statement)
                self.conn.execute(
                    "INSERT INTO migrations (filename) VALUES (?)", (unit.name,)
                )
        except sqlite3.Error as e:
            raise MigrationFailure(unit.name, e) from e

        logger.info(f"Migration applied: {unit.name}")

    def _should_reset(self, failure: MigrationFailure) -> bool:
        if self.confirm_reset is None:
            return False
        return bool(self.confirm_reset(failure))


def run_migrations(
    conn: sqlite3.Connection,
    migrations_dir: str | Path | None = None,
    on_failure: FailurePolicy = "continue",
    confirm_reset: ConfirmReset | None = None,
) -> MigrationResult:
    """
    Bring an open store up to date.

    Args:
        conn: Store connection
        migrations_dir: Directory with index.json (None for bundled units)
        on_failure: "continue" or "halt"
        confirm_reset: Operator callback, see MigrationEngine

    Returns:
        MigrationResult
    """
    engine = MigrationEngine(
        conn,
        MigrationRegistry(migrations_dir),
        on_failure=on_failure,
        confirm_reset=confirm_reset,
    )
    return engine.run()


def init_store(
    config: ForgeConfig | None = None,
    confirm_reset: ConfirmReset | None = None,
    raise_on_failure: bool = False,
) -> MigrationResult:
    """
    Startup path: open the configured store, migrate it and close it.

    Safe to call on every start; a current store is a no-op.

    Args:
        config: Loaded configuration (defaults when None)
        confirm_reset: Operator callback for destructive reset
        raise_on_failure: Raise the first MigrationFailure instead of only
            reporting it in the result (unless the store was reset)

    Returns:
        MigrationResult

    Raises:
        MigrationFailure: When raise_on_failure is set and a unit failed
        MigrationIndexError: If the index cannot be read
    """
    config = config or ForgeConfig()

    with connect(config.store.db_path, config.store.busy_timeout_seconds) as conn:
        result = run_migrations(
            conn,
            migrations_dir=config.store.migrations_dir,
            on_failure=config.migrations.on_failure,
            confirm_reset=confirm_reset,
        )

    if result.failures:
        logger.warning(f"Some migrations failed: {', '.join(result.failed_units)}")
        if raise_on_failure and not result.reset_performed:
            raise result.failures[0]
    else:
        logger.info(f"Store initialized at {config.store.db_path}")

    return result
