"""
Encrypted storage of AI provider API keys.

Keys are held in the ai_providers table as ciphertext only. Encryption is an
external collaborator: any object with encrypt(plaintext, passphrase) and
decrypt(ciphertext, passphrase) methods (see Cipher). The passphrase is
supplied per call and never stored.

Security:
    - Plaintext keys are never written to the store or to logs
    - A key that fails to decrypt is reported as missing, not raised
"""

import logging
import sqlite3
from typing import Protocol

from prompt_forge.exceptions import CredentialError, NotFoundError, ValidationError

from ..utils.time import utc_timestamp
from .db import transaction
from .models import ProviderCredential

logger = logging.getLogger(__name__)

_PROVIDER_COLUMNS = (
    "id, provider_name, encrypted_api_key, last_used_model, created_at, updated_at"
)


class Cipher(Protocol):
    """Symmetric encryption keyed by a passphrase."""

    def encrypt(self, plaintext: str, passphrase: str) -> str: ...

    def decrypt(self, ciphertext: str, passphrase: str) -> str: ...


def store_api_key(
    conn: sqlite3.Connection,
    provider_name: str,
    api_key: str,
    passphrase: str | None,
    cipher: Cipher,
    last_used_model: str | None = None,
) -> ProviderCredential:
    """
    Encrypt and store a provider's API key, replacing any previous one.

    Args:
        conn: Open store connection
        provider_name: Provider identifier (e.g., "openai")
        api_key: Plaintext key
        passphrase: Encryption passphrase
        cipher: Encryption collaborator
        last_used_model: Model to remember for this provider

    Returns:
        The stored ProviderCredential

    Raises:
        CredentialError: If no passphrase is set
        ValidationError: If provider_name or api_key is blank
    """
    if not passphrase:
        raise CredentialError("Encryption passphrase not set")
    if not provider_name or not provider_name.strip():
        raise ValidationError("Provider name cannot be blank")
    if not api_key or not api_key.strip():
        raise ValidationError(f"API key for {provider_name} cannot be blank")

    encrypted = cipher.encrypt(api_key, passphrase)
    timestamp = utc_timestamp()

    with transaction(conn):
        conn.execute(
            """
            INSERT INTO ai_providers (
                provider_name, encrypted_api_key, last_used_model,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(provider_name) DO UPDATE SET
                encrypted_api_key = excluded.encrypted_api_key,
                last_used_model = excluded.last_used_model,
                updated_at = excluded.updated_at
            """,
            (provider_name, encrypted, last_used_model, timestamp, timestamp),
        )

    logger.info(f"Stored API key for provider {provider_name}")
    return get_provider(conn, provider_name)


def get_api_keys(
    conn: sqlite3.Connection,
    provider_names: list[str],
    passphrase: str | None,
    cipher: Cipher,
) -> dict[str, str | None]:
    """
    Decrypt the stored keys of several providers at once.

    Every requested provider appears in the result. A provider with no stored
    key, or whose key cannot be decrypted, maps to None. Without a passphrase
    every provider maps to None.

    Example:
        >>> get_api_keys(conn, ["openai", "xai"], "hunter2", cipher)
        {'openai': 'sk-...', 'xai': None}
    """
    keys: dict[str, str | None] = dict.fromkeys(provider_names)
    if not passphrase or not provider_names:
        return keys

    placeholders = ", ".join("?" for _ in provider_names)
    rows = conn.execute(
        "SELECT provider_name, encrypted_api_key FROM ai_providers "
        f"WHERE provider_name IN ({placeholders})",
        provider_names,
    ).fetchall()

    for row in rows:
        try:
            keys[row["provider_name"]] = cipher.decrypt(
                row["encrypted_api_key"], passphrase
            )
        except Exception as e:
            logger.warning(
                f"Failed to decrypt API key for {row['provider_name']}: "
                f"{type(e).__name__}"
            )
            keys[row["provider_name"]] = None

    return keys


def get_provider(
    conn: sqlite3.Connection, provider_name: str
) -> ProviderCredential | None:
    """Fetch one provider's stored credential without decrypting it."""
    row = conn.execute(
        f"SELECT {_PROVIDER_COLUMNS} FROM ai_providers WHERE provider_name = ?",
        (provider_name,),
    ).fetchone()
    return ProviderCredential.from_row(row) if row else None


def update_last_used_model(
    conn: sqlite3.Connection, provider_name: str, model_id: str
) -> None:
    """
    Remember the model last used with a provider.

    Raises:
        NotFoundError: If the provider has no stored credential
    """
    with transaction(conn):
        cursor = conn.execute(
            "UPDATE ai_providers SET last_used_model = ?, updated_at = ? "
            "WHERE provider_name = ?",
            (model_id, utc_timestamp(), provider_name),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Provider {provider_name} not found")


def list_providers(conn: sqlite3.Connection) -> list[ProviderCredential]:
    """All stored providers by name, keys left encrypted."""
    rows = conn.execute(
        f"SELECT {_PROVIDER_COLUMNS} FROM ai_providers ORDER BY provider_name"
    ).fetchall()
    return [ProviderCredential.from_row(row) for row in rows]


def remove_provider(conn: sqlite3.Connection, provider_name: str) -> bool:
    """
    Delete a provider and its key.

    Returns:
        True if a credential was removed, False if none was stored
    """
    with transaction(conn):
        cursor = conn.execute(
            "DELETE FROM ai_providers WHERE provider_name = ?", (provider_name,)
        )
    removed = cursor.rowcount > 0
    if removed:
        logger.info(f"Removed provider {provider_name}")
    return removed
