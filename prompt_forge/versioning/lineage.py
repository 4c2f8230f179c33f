"""
Lineage manager: turns "save this text" into versioned prompt records.

Every save becomes a new immutable PromptRecord. The manager decides, inside
the insert's write transaction, whether the record starts a lineage
(change_kind "initial", version 1) or continues the most recent one
(change_kind "manual_edit", parent's version + 1).

Methodology application checkpoints the current text, runs the external
transform with no transaction open, then stores the transform's output as a
"methodology_apply" record bound to the methodology.

Example:
    >>> manager = LineageManager(conn)
    >>> a = manager.save("A")          # initial, v1
    >>> b = manager.save("B")          # manual_edit, v2, parent a
    >>> manager.start_new_lineage()
    >>> c = manager.save("C")          # initial, v1, new lineage
"""

import logging
import sqlite3
from collections.abc import Callable
from typing import Any, Protocol

from prompt_forge.config.constants import TITLE_ELLIPSIS, TITLE_MAX_LENGTH
from prompt_forge.exceptions import (
    EmptyContentError,
    NotFoundError,
    ParentNotFoundError,
    TransformFailure,
)
from prompt_forge.storage.db import insert_prompt, require_methodology, transaction
from prompt_forge.storage.models import ChangeKind, MethodologyRecord, PromptRecord
from prompt_forge.storage.queries import get_latest_prompt, get_prompt
from prompt_forge.utils.logging import log_with_context

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


class Transform(Protocol):
    """
    External text transformation (e.g., an AI provider call).

    Receives the text and the methodology to apply, may report partial
    output through on_progress, and returns the final text.
    """

    def __call__(
        self,
        content: str,
        methodology: MethodologyRecord,
        on_progress: ProgressCallback | None,
    ) -> str: ...


def derive_title(content: str, max_length: int = TITLE_MAX_LENGTH) -> str:
    """
    Title for a prompt: its first line, cut to max_length characters with
    "..." appended when longer.

    Example:
        >>> derive_title("Short line\\nmore text")
        'Short line'
        >>> derive_title("x" * 60) == "x" * 50 + "..."
        True
    """
    first_line = content.split("\n")[0]
    if len(first_line) > max_length:
        return first_line[:max_length] + TITLE_ELLIPSIS
    return first_line


def _ensure_content(content: str) -> None:
    if not isinstance(content, str) or not content.strip():
        raise EmptyContentError("Prompt content cannot be blank")


class LineageManager:
    """
    Assigns version numbers and lineage identity to every save.

    Args:
        conn: Store connection (see storage.db.open_connection)
        title_max_length: Characters of the first line kept as title

    Attributes:
        new_lineage_pending: True after start_new_lineage() until the next
            successful save consumes it
    """

    def __init__(
        self, conn: sqlite3.Connection, title_max_length: int = TITLE_MAX_LENGTH
    ):
        self.conn = conn
        self.title_max_length = title_max_length
        self.new_lineage_pending = False

    def start_new_lineage(self) -> None:
        """Make the next successful save start a fresh lineage."""
        self.new_lineage_pending = True

    def save(
        self,
        content: str,
        *,
        new_lineage: bool = False,
        metadata: dict[str, Any] | None = None,
        lineage_root_id: int | None = None,
    ) -> PromptRecord:
        """
        Save content as the next version.

        The most recently created record store-wide becomes the parent. With
        an empty store, new_lineage=True, or a pending start_new_lineage(),
        the record is a new lineage root instead.

        Args:
            content: Prompt text, must not be blank
            new_lineage: Start a new lineage regardless of existing records
            metadata: JSON-serializable dict stored with the record
            lineage_root_id: Continue this lineage's latest version instead of
                the store-wide latest record

        Returns:
            The stored PromptRecord

        Raises:
            EmptyContentError: If content is blank (nothing is written)
            NotFoundError: If lineage_root_id names no lineage
            ParentNotFoundError: If the latest record cannot be re-read
            InvariantViolation: If the write would break an invariant
        """
        _ensure_content(content)
        title = derive_title(content, self.title_max_length)
        start_lineage = new_lineage or self.new_lineage_pending

        with transaction(self.conn):
            latest = None
            if not start_lineage:
                latest = get_latest_prompt(self.conn, lineage_root_id)
                if latest is None and lineage_root_id is not None:
                    raise NotFoundError(
                        f"Lineage {lineage_root_id} not found",
                        record_id=lineage_root_id,
                    )

            if latest is None:
                record = insert_prompt(
                    self.conn,
                    content=content,
                    change_kind=ChangeKind.INITIAL,
                    version_number=1,
                    title=title,
                    metadata=metadata,
                )
            else:
                parent = get_prompt(self.conn, latest.id)
                if parent is None:
                    raise ParentNotFoundError(
                        f"Latest prompt {latest.id} disappeared before save",
                        record_id=latest.id,
                    )
                record = insert_prompt(
                    self.conn,
                    content=content,
                    change_kind=ChangeKind.MANUAL_EDIT,
                    version_number=parent.version_number + 1,
                    parent_id=parent.id,
                    lineage_root_id=parent.lineage_root_id,
                    title=title,
                    metadata=metadata,
                )

        self.new_lineage_pending = False

        log_with_context(
            logger,
            logging.INFO,
            "Prompt saved",
            context={
                "change_kind": record.change_kind.value,
                "version_number": record.version_number,
                "lineage_root_id": record.lineage_root_id,
            },
            record_id=record.id,
        )
        return record

    def apply_methodology(
        self,
        content: str,
        methodology: MethodologyRecord,
        transform: Transform,
        *,
        on_progress: ProgressCallback | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> PromptRecord:
        """
        Checkpoint content, transform it, and store the result.

        Three steps:
        1. content is saved as a manual_edit checkpoint (its own transaction;
           it is a new root when the store is empty or a new lineage is
           pending)
        2. transform(content, methodology, on_progress) runs with no
           transaction open
        3. the output is saved as methodology_apply, child of the checkpoint

        Args:
            content: Text to transform, must not be blank
            methodology: Methodology to apply (must exist in the store)
            transform: External transform
            on_progress: Receives partial output while the transform runs
            metadata: JSON-serializable dict stored with the result

        Returns:
            The methodology_apply PromptRecord

        Raises:
            EmptyContentError: If content is blank (nothing is written)
            NotFoundError: If the methodology is not in the store
            TransformFailure: If the transform raised or returned blank text.
                The checkpoint is kept; its id is on the exception.
            KeyboardInterrupt and other BaseException from the transform
                propagate unchanged, with only the checkpoint written
        """
        _ensure_content(content)
        require_methodology(self.conn, methodology.id)

        checkpoint = self.save(content)

        logger.info(
            f"Applying methodology {methodology.name} to prompt {checkpoint.id}"
        )
        try:
            transformed = transform(content, methodology, on_progress)
        except Exception as e:
            logger.error(
                f"Transform failed for methodology {methodology.name}: {e}",
                exc_info=True,
            )
            raise TransformFailure(
                f"Transform with methodology {methodology.name} failed: {e}",
                checkpoint_id=checkpoint.id,
            ) from e

        if not isinstance(transformed, str) or not transformed.strip():
            raise TransformFailure(
                f"Transform with methodology {methodology.name} returned no text",
                checkpoint_id=checkpoint.id,
            )

        with transaction(self.conn):
            record = insert_prompt(
                self.conn,
                content=transformed,
                change_kind=ChangeKind.METHODOLOGY_APPLY,
                version_number=checkpoint.version_number + 1,
                parent_id=checkpoint.id,
                lineage_root_id=checkpoint.lineage_root_id,
                methodology_id=methodology.id,
                title=derive_title(transformed, self.title_max_length),
                metadata=metadata,
            )

        logger.info(
            f"Saved prompt {record.id} as version {record.version_number} "
            f"({methodology.name})"
        )
        return record
