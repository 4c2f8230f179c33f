"""
Record types held by the Prompt Forge store.

The store owns two record families:
- MethodologyRecord: reference data seeded by migrations, read-mostly
- PromptRecord: versioned prompt snapshots, append-only with lineage

Plus ProviderCredential rows for the encrypted AI provider key storage.

Records are frozen dataclasses built from sqlite3.Row objects. Nothing
outside storage/ mutates them; a new version is a new record.
"""

import json
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ChangeKind(str, Enum):
    """How a prompt record came to exist."""

    INITIAL = "initial"
    MANUAL_EDIT = "manual_edit"
    METHODOLOGY_APPLY = "methodology_apply"


class MethodologyKind(str, Enum):
    """Taxonomy bucket of a methodology."""

    INTENT = "intent"
    TECHNIQUE = "technique"
    EVASION = "evasion"


def _load_metadata(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    value = json.loads(raw)
    return value if isinstance(value, dict) else {}


@dataclass(frozen=True)
class MethodologyRecord:
    """
    A named, reusable transformation technique.

    Attributes:
        id: Store-assigned identifier
        name: Unique, non-empty name (e.g., "narrative_smuggling")
        description: Human-readable description
        path: Taxonomy path (e.g., "attack_techniques/obfuscation/narrative_smuggling")
        kind: intent, technique or evasion
        examples: Opaque JSON text of example attacks
        prompt_samples: Opaque JSON text of sample injections
        created_at: ISO 8601 UTC timestamp
        updated_at: ISO 8601 UTC timestamp, refreshed by trigger on update
    """

    id: int
    name: str
    path: str
    kind: MethodologyKind
    description: str = ""
    examples: str | None = None
    prompt_samples: str | None = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MethodologyRecord":
        return cls(
            id=row["id"],
            name=row["name"],
            description=row["description"] or "",
            path=row["path"],
            kind=MethodologyKind(row["type"]),
            examples=row["examples"],
            prompt_samples=row["prompt_samples"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(frozen=True)
class PromptRecord:
    """
    One immutable, versioned snapshot of a prompt.

    Attributes:
        id: Store-assigned identifier
        content: Full prompt text (never blank)
        change_kind: initial, manual_edit or methodology_apply
        version_number: Position in the lineage, starting at 1
        lineage_root_id: Id of the lineage's initial record (self for roots)
        title: First line of content, truncated for display
        parent_id: Previous version in the lineage (None for roots, or after
            the parent was deleted)
        methodology_id: Methodology applied (methodology_apply only)
        metadata: Free-form JSON object
        created_at: ISO 8601 UTC timestamp
        updated_at: ISO 8601 UTC timestamp
    """

    id: int
    content: str
    change_kind: ChangeKind
    version_number: int
    lineage_root_id: int
    title: str | None = None
    parent_id: int | None = None
    methodology_id: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_root(self) -> bool:
        return self.change_kind is ChangeKind.INITIAL

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PromptRecord":
        return cls(
            id=row["id"],
            title=row["title"],
            content=row["content"],
            parent_id=row["parent_prompt_id"],
            methodology_id=row["methodology_id"],
            change_kind=ChangeKind(row["change_type"]),
            version_number=row["version_number"],
            lineage_root_id=row["lineage_root_id"],
            metadata=_load_metadata(row["metadata"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(frozen=True)
class ProviderCredential:
    """
    An AI provider's stored credential. The key is only ever held encrypted.

    Attributes:
        id: Store-assigned identifier
        provider_name: Unique provider name ("openai", "anthropic", "xai")
        encrypted_api_key: Ciphertext produced by the injected cipher
        last_used_model: Most recently used model id, if any
        created_at: ISO 8601 UTC timestamp
        updated_at: ISO 8601 UTC timestamp
    """

    id: int
    provider_name: str
    encrypted_api_key: str
    last_used_model: str | None = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ProviderCredential":
        return cls(
            id=row["id"],
            provider_name=row["provider_name"],
            encrypted_api_key=row["encrypted_api_key"],
            last_used_model=row["last_used_model"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
