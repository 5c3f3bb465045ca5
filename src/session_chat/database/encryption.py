"""
Encryption manager for field-level encryption of stored message content.
"""

import base64
import logging
import os
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

MASTER_KEY_ENV = "SESSION_CHAT_MASTER_KEY"


class EncryptionManager:
    """Manages field-level encryption for chat data."""

    def __init__(self, master_key: str | None = None, key_file: Path | None = None):
        self._encryption_keys: dict[str, Fernet] = {}
        self._master_key = self._resolve_master_key(master_key, key_file)
        self._current_key_id = "primary_v1"
        self._encryption_keys[self._current_key_id] = Fernet(
            self._derive_key(self._master_key, self._current_key_id)
        )

    def _resolve_master_key(self, master_key: str | None, key_file: Path | None) -> str:
        """Pick the master key: explicit > environment > key file > ephemeral."""
        if master_key:
            return master_key

        env_key = os.environ.get(MASTER_KEY_ENV)
        if env_key:
            return env_key

        if key_file is not None:
            if key_file.exists():
                return key_file.read_text(encoding="utf-8").strip()

            generated = base64.urlsafe_b64encode(os.urandom(32)).decode()
            key_file.parent.mkdir(parents=True, exist_ok=True)
            key_file.write_text(generated, encoding="utf-8")
            key_file.chmod(0o600)
            logger.info(f"Generated new master key at {key_file}")
            return generated

        logger.warning(
            f"{MASTER_KEY_ENV} not set, using an ephemeral key; "
            "encrypted data will not be readable after restart"
        )
        return base64.urlsafe_b64encode(os.urandom(32)).decode()

    def _derive_key(self, master_key: str, key_id: str) -> bytes:
        """Derive encryption key from master key and key ID."""
        # key_id doubles as the salt
        salt = key_id.encode("utf-8").ljust(16, b"0")[:16]

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
        )

        return base64.urlsafe_b64encode(kdf.derive(master_key.encode()))

    def encrypt(self, data: str) -> tuple[str, str]:
        """
        Encrypt data and return (encrypted_data, key_id).

        Returns:
            Tuple of (base64_encrypted_data, key_id_used)
        """
        fernet = self._encryption_keys[self._current_key_id]
        encrypted_bytes = fernet.encrypt(data.encode("utf-8"))
        return base64.b64encode(encrypted_bytes).decode("utf-8"), self._current_key_id

    def decrypt(self, encrypted_data: str, key_id: str) -> str:
        """
        Decrypt data using the specified key ID.

        Raises:
            ValueError: If the key is unknown or the data cannot be decrypted
        """
        if key_id not in self._encryption_keys:
            self._encryption_keys[key_id] = Fernet(
                self._derive_key(self._master_key, key_id)
            )

        fernet = self._encryption_keys[key_id]
        try:
            decrypted_bytes = fernet.decrypt(base64.b64decode(encrypted_data.encode("utf-8")))
        except InvalidToken as e:
            raise ValueError(f"Cannot decrypt data with key {key_id}") from e

        return decrypted_bytes.decode("utf-8")

    def get_current_key_id(self) -> str:
        """Get the current key ID for new encryptions."""
        return self._current_key_id

    def rotate_key(self, new_key_id: str) -> None:
        """
        Switch future encryptions to a new derived key.

        Existing rows keep their key id and stay readable.
        """
        self._encryption_keys[new_key_id] = Fernet(
            self._derive_key(self._master_key, new_key_id)
        )
        self._current_key_id = new_key_id
