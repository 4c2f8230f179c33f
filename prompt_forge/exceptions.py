"""
Custom exceptions for Prompt Forge.

This module provides a hierarchy of exceptions that enable type-safe error
handling throughout the application. All exceptions inherit from the base
PromptForgeError for consistent catching.

Exception Hierarchy:
    PromptForgeError (base)
    ├── ConfigurationError
    │   ├── ConfigFileNotFoundError
    │   └── ConfigValidationError
    ├── ValidationError
    │   └── EmptyContentError
    ├── NotFoundError
    │   └── ParentNotFoundError
    ├── DatabaseError
    │   ├── InvariantViolation
    │   ├── MigrationFailure
    │   └── MigrationIndexError
    ├── TransformFailure
    └── CredentialError

Usage:
    from prompt_forge.exceptions import InvariantViolation

    try:
        insert_prompt(conn, ...)
    except InvariantViolation as e:
        logger.error(f"Rejected write ({e.invariant.value}): {e}")
"""

from enum import Enum


class PromptForgeError(Exception):
    """
    Base exception for all Prompt Forge errors.

    All custom exceptions in this application inherit from this class so
    callers can catch every application-specific error with one clause.
    """

    pass


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(PromptForgeError):
    """
    Base class for configuration-related errors.

    Should be caught and result in exit code 1 (configuration error).
    """

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """
    Configuration file does not exist at the specified path.

    Example:
        raise ConfigFileNotFoundError("/path/to/prompt_forge.config.yaml")
    """

    pass


class ConfigValidationError(ConfigurationError):
    """
    Configuration file is invalid (YAML syntax or schema validation failed).

    Example:
        raise ConfigValidationError("Field 'editor.history_limit' must be positive")
    """

    pass


# ============================================================================
# Input Validation Errors
# ============================================================================


class ValidationError(PromptForgeError):
    """
    Caller input was rejected before any write happened.

    Fully recoverable: retry with corrected input.
    """

    pass


class EmptyContentError(ValidationError):
    """
    Prompt content is empty or whitespace-only.

    Example:
        raise EmptyContentError("Prompt content cannot be blank")
    """

    pass


# ============================================================================
# Lookup Errors
# ============================================================================


class NotFoundError(PromptForgeError):
    """
    A referenced record id does not exist.

    Recoverable: the caller should refresh its view of the store.

    Attributes:
        record_id: The id that could not be found (if known)
    """

    def __init__(self, message: str, record_id: int | None = None):
        super().__init__(message)
        self.record_id = record_id


class ParentNotFoundError(NotFoundError):
    """
    The latest-record lookup returned an id that is no longer present.

    Indicates store corruption or a concurrent delete between lookup and write.
    """

    pass


# ============================================================================
# Database Errors
# ============================================================================


class DatabaseError(PromptForgeError):
    """
    Base class for store-related errors.

    Should be caught and result in exit code 2 (store error).
    """

    pass


class Invariant(str, Enum):
    """Write-time rules every prompt record must satisfy."""

    VERSION_CONTINUITY = "version_continuity"
    METHODOLOGY_BINDING = "methodology_binding"
    LINEAGE_IDENTITY = "lineage_identity"
    UNIQUENESS = "uniqueness"


class InvariantViolation(DatabaseError):
    """
    A write would break one of the prompt record invariants.

    The write is always rolled back; nothing is partially applied.

    Attributes:
        invariant: Which Invariant was violated
        record_id: Offending record id, when one was assigned or referenced

    Example:
        raise InvariantViolation(
            Invariant.UNIQUENESS,
            "Lineage 3 already has a version 2",
        )
    """

    def __init__(
        self,
        invariant: Invariant,
        message: str,
        record_id: int | None = None,
    ):
        super().__init__(f"[{invariant.value}] {message}")
        self.invariant = invariant
        self.record_id = record_id


class MigrationFailure(DatabaseError):
    """
    A migration unit's statements errored.

    The store is left exactly as it was before that unit. Fatal to startup
    until resolved by destructive reset or a corrected migration unit.

    Attributes:
        unit_name: Filename of the failed migration unit
        cause: Underlying exception raised while applying the unit

    Example:
        raise MigrationFailure("20251110_014400_init.sql", exc)
    """

    def __init__(self, unit_name: str, cause: BaseException | None = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Migration {unit_name} failed{detail}")
        self.unit_name = unit_name
        self.cause = cause


class MigrationIndexError(DatabaseError):
    """
    The migration index (index.json) is missing or malformed.

    Example:
        raise MigrationIndexError("Migration index not found: ./schema/index.json")
    """

    pass


# ============================================================================
# Collaborator Errors
# ============================================================================


class TransformFailure(PromptForgeError):
    """
    The external methodology transform errored or returned unusable text.

    Recoverable: the pre-transform checkpoint is preserved.

    Attributes:
        checkpoint_id: Id of the manual_edit checkpoint saved before the transform
    """

    def __init__(self, message: str, checkpoint_id: int | None = None):
        super().__init__(message)
        self.checkpoint_id = checkpoint_id


class CredentialError(PromptForgeError):
    """
    Provider credentials cannot be stored (e.g., no passphrase supplied).

    Example:
        raise CredentialError("Encryption passphrase not set")
    """

    pass
