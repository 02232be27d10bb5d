"""Payer credential encryption and storage.

Uses Fernet symmetric encryption for secure storage of payer credentials
(OAuth client secrets, API keys, certificates).

Environment variable PAYER_CREDENTIAL_ENCRYPTION_KEY must be set with a
valid Fernet key. Generate with:
    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import base64
import logging
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel, Field, TypeAdapter

from .. import config
from ..constants import MAX_CREDENTIAL_ERRORS
from ..models import CredentialType, PayerCredential

logger = logging.getLogger(__name__)


class OAuthClientCredentials(BaseModel):
    """OAuth2 client credentials."""

    type: Literal["oauth_client"] = "oauth_client"
    client_id: str
    client_secret: str = Field(repr=False)
    token_endpoint: str | None = None
    scopes: list[str] = []


class ApiKeyCredentials(BaseModel):
    """Static API key."""

    type: Literal["api_key"] = "api_key"
    api_key: str = Field(repr=False)
    api_key_header: str | None = None


class UsernamePasswordCredentials(BaseModel):
    """Portal username and password."""

    type: Literal["username_password"] = "username_password"
    username: str
    password: str = Field(repr=False)


class CertificateCredentials(BaseModel):
    """PEM-encoded client certificate."""

    type: Literal["certificate"] = "certificate"
    certificate: str
    private_key: str = Field(repr=False)
    passphrase: str | None = Field(default=None, repr=False)


PayerCredentialData = Annotated[
    Union[
        OAuthClientCredentials,
        ApiKeyCredentials,
        UsernamePasswordCredentials,
        CertificateCredentials,
    ],
    Field(discriminator="type"),
]

_credential_data_adapter: TypeAdapter[Any] = TypeAdapter(PayerCredentialData)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CredentialManager:
    """Manages encrypted storage of payer credentials.

    Credentials are encrypted using Fernet (AES-128-CBC with HMAC) and
    stored in SQLite, one row per practice and payer. Decrypted values are
    handed out per call and never cached here.
    """

    def __init__(self, db_path: str, encryption_key: str | None = None) -> None:
        """Initialize the credential manager.

        Args:
            db_path: Path to the SQLite database
            encryption_key: Fernet key for encryption (defaults to env var)
        """
        self.db_path = db_path
        self._key = encryption_key or os.getenv(config.CREDENTIAL_ENCRYPTION_KEY_ENV)
        self._fernet: Fernet | None = None

        if self._key:
            try:
                self._fernet = Fernet(self._key.encode())
            except (ValueError, TypeError) as e:
                logger.error(f"Invalid encryption key: {e}")
                self._fernet = None
        else:
            logger.warning(
                f"{config.CREDENTIAL_ENCRYPTION_KEY_ENV} not set - "
                "payer credential encryption disabled"
            )

        self._init_table()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_table(self) -> None:
        """Create the credentials table if it doesn't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS payer_credentials (
                    id TEXT PRIMARY KEY,
                    practice_id INTEGER NOT NULL,
                    payer_code TEXT NOT NULL,
                    credential_type TEXT NOT NULL,
                    encrypted_value TEXT NOT NULL,
                    expires_at TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    error_count INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    last_used TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(practice_id, payer_code)
                )
            """)

    @property
    def encryption_enabled(self) -> bool:
        """Check if encryption is properly configured."""
        return self._fernet is not None

    def encrypt(self, data: PayerCredentialData) -> str:
        """Encrypt typed credential data.

        Args:
            data: Credential data to encrypt

        Returns:
            Base64-encoded encrypted value

        Raises:
            ValueError: If encryption is not configured
        """
        if not self._fernet:
            raise ValueError(
                f"Encryption not configured. Set {config.CREDENTIAL_ENCRYPTION_KEY_ENV} env var."
            )

        plaintext = data.model_dump_json()
        encrypted = self._fernet.encrypt(plaintext.encode())
        return base64.urlsafe_b64encode(encrypted).decode()

    def decrypt(self, credential: PayerCredential | str) -> PayerCredentialData:
        """Decrypt a stored credential into its typed form.

        Args:
            credential: Stored credential or its encrypted value

        Returns:
            One of the PayerCredentialData variants

        Raises:
            ValueError: If decryption or validation fails
        """
        if not self._fernet:
            raise ValueError("Encryption not configured")

        encrypted_value = (
            credential.encrypted_credentials
            if isinstance(credential, PayerCredential)
            else credential
        )

        try:
            decoded = base64.urlsafe_b64decode(encrypted_value.encode())
            plaintext = self._fernet.decrypt(decoded).decode()
        except (InvalidToken, ValueError):
            raise ValueError("Invalid encrypted value or wrong key")

        return _credential_data_adapter.validate_json(plaintext)

    def seal(
        self,
        practice_id: int,
        payer_code: str,
        data: PayerCredentialData,
        expires_at: datetime | None = None,
    ) -> PayerCredential:
        """Encrypt credential data into a PayerCredential without storing it."""
        return PayerCredential(
            practice_id=practice_id,
            payer_code=payer_code,
            credential_type=CredentialType(data.type),
            encrypted_credentials=self.encrypt(data),
            expires_at=expires_at,
        )

    def store_credentials(
        self,
        practice_id: int,
        payer_code: str,
        data: PayerCredentialData,
        expires_at: datetime | None = None,
    ) -> PayerCredential:
        """Store encrypted credentials for a practice and payer.

        Storing again for the same pair replaces the secret and resets the
        error state (credential rotation).

        Returns:
            The stored PayerCredential
        """
        encrypted = self.encrypt(data)
        now = _utcnow().isoformat()
        new_id = str(uuid4())

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO payer_credentials
                    (id, practice_id, payer_code, credential_type, encrypted_value,
                     expires_at, is_active, error_count, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, 1, 0, ?, ?)
                ON CONFLICT(practice_id, payer_code) DO UPDATE SET
                    credential_type = excluded.credential_type,
                    encrypted_value = excluded.encrypted_value,
                    expires_at = excluded.expires_at,
                    is_active = 1,
                    error_count = 0,
                    last_error = NULL,
                    updated_at = excluded.updated_at
                """,
                (
                    new_id,
                    practice_id,
                    payer_code,
                    data.type,
                    encrypted,
                    expires_at.isoformat() if expires_at else None,
                    now,
                    now,
                ),
            )
            conn.commit()

        logger.debug(f"Stored {data.type} credential for {payer_code} (practice {practice_id})")
        stored = self._fetch(practice_id, payer_code)
        if stored is None:
            raise RuntimeError(
                f"Credential for {payer_code} (practice {practice_id}) missing after write"
            )
        return stored

    def _fetch(self, practice_id: int, payer_code: str) -> PayerCredential | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM payer_credentials
                WHERE practice_id = ? AND payer_code = ?
                """,
                (practice_id, payer_code),
            ).fetchone()

        if not row:
            return None

        return PayerCredential(
            id=row["id"],
            practice_id=row["practice_id"],
            payer_code=row["payer_code"],
            credential_type=CredentialType(row["credential_type"]),
            encrypted_credentials=row["encrypted_value"],
            expires_at=_parse_timestamp(row["expires_at"]),
            is_active=bool(row["is_active"]),
            error_count=row["error_count"],
            last_error=row["last_error"],
            last_used=_parse_timestamp(row["last_used"]),
        )

    def get_credentials(self, practice_id: int, payer_code: str) -> PayerCredential | None:
        """Retrieve active, unexpired credentials for a practice and payer.

        Expired credentials are deactivated and reported as missing.
        """
        credential = self._fetch(practice_id, payer_code)
        if credential is None or not credential.is_active:
            return None

        if credential.expires_at and credential.expires_at < _utcnow():
            logger.info(f"Credential for {payer_code} (practice {practice_id}) expired")
            self._update(credential.id, is_active=0)
            return None

        return credential

    def _update(self, credential_id: str | None, **fields: Any) -> None:
        if credential_id is None:
            return
        assignments = ", ".join(f"{name} = ?" for name in fields)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE payer_credentials SET {assignments}, updated_at = ? WHERE id = ?",
                (*fields.values(), _utcnow().isoformat(), credential_id),
            )
            conn.commit()

    def record_usage(self, credential_id: str | None) -> None:
        """Record a successful call made with a credential."""
        self._update(
            credential_id,
            last_used=_utcnow().isoformat(),
            error_count=0,
            last_error=None,
        )

    def record_error(self, credential_id: str | None, error: str) -> None:
        """Record a credential failure, deactivating it after repeated errors."""
        if credential_id is None:
            return

        with self._connect() as conn:
            row = conn.execute(
                "SELECT error_count FROM payer_credentials WHERE id = ?",
                (credential_id,),
            ).fetchone()

        error_count = (row["error_count"] if row else 0) + 1
        is_active = error_count < MAX_CREDENTIAL_ERRORS
        if not is_active:
            logger.warning(
                f"Deactivating credential {credential_id} after {error_count} errors"
            )

        self._update(
            credential_id,
            last_error=error,
            error_count=error_count,
            is_active=int(is_active),
        )

    def delete_credentials(self, practice_id: int, payer_code: str | None = None) -> int:
        """Delete credentials for a practice, optionally only for one payer.

        Returns:
            Number of credentials deleted
        """
        with self._connect() as conn:
            if payer_code is None:
                cursor = conn.execute(
                    "DELETE FROM payer_credentials WHERE practice_id = ?",
                    (practice_id,),
                )
            else:
                cursor = conn.execute(
                    "DELETE FROM payer_credentials WHERE practice_id = ? AND payer_code = ?",
                    (practice_id, payer_code),
                )
            conn.commit()
            return cursor.rowcount

    @staticmethod
    def generate_encryption_key() -> str:
        """Generate a new Fernet key (for initial setup)."""
        return Fernet.generate_key().decode()


# Global singleton instance
_credential_manager: CredentialManager | None = None


def get_credential_manager(db_path: str | None = None) -> CredentialManager:
    """Get or create the global CredentialManager instance.

    Args:
        db_path: Path to SQLite database (used on first call)

    Returns:
        Global CredentialManager instance
    """
    global _credential_manager

    if _credential_manager is None:
        _credential_manager = CredentialManager(db_path or config.DB_PATH)

    return _credential_manager
