"""
Encrypted controller credential storage.

Credentials are kept in {config_dir}/credentials.enc as Fernet-encrypted
JSON. The key is generated once and stored in {config_dir}/.key with
owner-only permissions, so a copied credentials file is useless without
the key file.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class CredentialStore:
    """Fernet-encrypted local storage for controller credentials.

    Usage:
        store = CredentialStore(Path("/config"))
        store.store_credentials("admin", "secret")
        creds = store.load_credentials()  # {"username": ..., "password": ...}
    """

    def __init__(self, config_dir: Path):
        self._config_dir = Path(config_dir)
        self._store_path = self._config_dir / "credentials.enc"
        self._key_path = self._config_dir / ".key"
        self._config_dir.mkdir(parents=True, exist_ok=True)
        self._fernet = Fernet(self._load_or_create_key())

    def _load_or_create_key(self) -> bytes:
        """Read the master key, generating it on first use."""
        if self._key_path.exists():
            key = self._key_path.read_bytes().strip()
            try:
                Fernet(key)
                return key
            except ValueError:
                logger.warning(f"Invalid key in {self._key_path}, generating a new one")

        key = Fernet.generate_key()
        tmp_path = self._key_path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        os.chmod(tmp_path, 0o600)
        tmp_path.rename(self._key_path)
        logger.info(f"Generated new credential key at {self._key_path}")
        return key

    def store_credentials(self, username: str, password: str) -> None:
        """Encrypt and save credentials atomically."""
        data = json.dumps({
            "username": username,
            "password": password,
            "stored_at": datetime.now(timezone.utc).isoformat(),
        }).encode("utf-8")
        encrypted = self._fernet.encrypt(data)

        tmp_path = self._store_path.with_suffix(".tmp")
        tmp_path.write_bytes(encrypted)
        os.chmod(tmp_path, 0o600)
        tmp_path.rename(self._store_path)
        logger.info(f"Stored controller credentials for {username}")

    def load_credentials(self) -> Optional[dict[str, Any]]:
        """Load and decrypt credentials; None when absent or unreadable."""
        if not self._store_path.exists():
            return None

        try:
            decrypted = self._fernet.decrypt(self._store_path.read_bytes())
            return json.loads(decrypted.decode("utf-8"))
        except (InvalidToken, ValueError) as e:
            logger.error(f"Failed to load credential store: {type(e).__name__}")
            return None

    def has_credentials(self) -> bool:
        return self.load_credentials() is not None

    def clear_credentials(self) -> None:
        """Remove stored credentials."""
        self._store_path.unlink(missing_ok=True)
        logger.info("Cleared stored controller credentials")
