"""
Configuration schema models for Prompt Forge.

This module defines Pydantic models for validating and parsing the
prompt_forge.config.yaml file. Every section is optional; omitted sections
fall back to defaults so the store works with no config file at all.

Models:
    StoreSettings: Where the SQLite file and migration units live
    MigrationSettings: Policy for handling a failed migration unit
    EditorSettings: Title derivation and history listing defaults
    ForgeConfig: Root configuration model (validates entire YAML)

Example YAML:
    store:
      db_path: ./data/prompt_forge.db
      busy_timeout_seconds: 5
    migrations:
      on_failure: continue
    editor:
      title_max_length: 50
      history_limit: 10
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .constants import (
    DEFAULT_BUSY_TIMEOUT_SECONDS,
    DEFAULT_DB_PATH,
    DEFAULT_HISTORY_LIMIT,
    TITLE_MAX_LENGTH,
)


class StoreSettings(BaseModel):
    """
    Record store location settings.

    Attributes:
        db_path: Path to the SQLite database file (parent dirs are created)
        migrations_dir: Directory holding index.json and the .sql units.
            None means the units bundled with the package.
        busy_timeout_seconds: How long a writer waits on SQLite's lock
    """

    db_path: str = DEFAULT_DB_PATH
    migrations_dir: str | None = None
    busy_timeout_seconds: float = DEFAULT_BUSY_TIMEOUT_SECONDS

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: str) -> str:
        """Validate db_path is non-empty."""
        if not v or v.isspace():
            raise ValueError("db_path cannot be empty")
        return v

    @field_validator("migrations_dir")
    @classmethod
    def validate_migrations_dir(cls, v: str | None) -> str | None:
        """Validate migrations_dir, when given, is an existing directory."""
        if v is None:
            return v
        if not Path(v).is_dir():
            raise ValueError(f"migrations_dir is not a directory: {v}")
        return v

    @field_validator("busy_timeout_seconds")
    @classmethod
    def validate_busy_timeout(cls, v: float) -> float:
        """Validate busy timeout is not negative."""
        if v < 0:
            raise ValueError(f"busy_timeout_seconds must be >= 0, got: {v}")
        return v


class MigrationSettings(BaseModel):
    """
    Migration failure policy.

    Attributes:
        on_failure: What to do after a unit fails and the operator declines
            the destructive reset. "continue" tries the remaining units,
            "halt" stops the run.
    """

    on_failure: Literal["continue", "halt"] = "continue"


class EditorSettings(BaseModel):
    """
    Editor-facing defaults.

    Attributes:
        title_max_length: Characters kept from the first line for a title
        history_limit: Default number of records listed by history views
    """

    title_max_length: int = TITLE_MAX_LENGTH
    history_limit: int = DEFAULT_HISTORY_LIMIT

    @field_validator("title_max_length", "history_limit")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate limits are positive."""
        if v <= 0:
            raise ValueError(f"Value must be positive, got: {v}")
        return v


class ForgeConfig(BaseModel):
    """
    Root configuration model for prompt_forge.config.yaml.

    Attributes:
        store: Record store settings
        migrations: Migration failure policy
        editor: Editor defaults
    """

    store: StoreSettings = Field(default_factory=StoreSettings)
    migrations: MigrationSettings = Field(default_factory=MigrationSettings)
    editor: EditorSettings = Field(default_factory=EditorSettings)
