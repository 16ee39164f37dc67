"""AES-256-GCM encrypted storage for the cloud token and provider API keys.

On disk the token is ``iv:authTag:ciphertext`` (all hex) under ``token`` in
config.json. The 32-byte key lives hex-encoded in a sibling ``.key`` file,
owner read-only. The key file is created once and never rewritten; if it
disappears, stored tokens are unrecoverable and read as missing.
"""

import json
import logging
import os
import secrets
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..config import get_config_path, get_key_path
from ..errors import InvalidInputError, PermanentIOError
from .kv import atomic_write_json

logger = logging.getLogger(__name__)

KEY_BYTES = 32
IV_BYTES = 16
TAG_BYTES = 16
MIN_TOKEN_LENGTH = 10
TOKEN_FIELD = "token"
SECRETS_FIELD = "secrets"


class TokenStore:
    """Encrypts secrets into config.json using a key file beside it."""

    def __init__(self, config_path: Path | None = None, key_path: Path | None = None):
        self.config_path = config_path or get_config_path()
        self.key_path = key_path or get_key_path()

    def store_token(self, token: str) -> None:
        """Encrypt and persist ``token``. Nothing is written if it is rejected."""
        _validate(token)
        config = self._read_config()
        config[TOKEN_FIELD] = self.encrypt(token)
        atomic_write_json(self.config_path, config)

    def get_token(self) -> str | None:
        """Return the decrypted token, or None if anything is missing or invalid."""
        config = self._read_config()
        return self._decrypt_field(config.get(TOKEN_FIELD))

    def has_token(self) -> bool:
        return self.get_token() is not None

    def clear_token(self) -> None:
        """Remove the token, keeping every other config field."""
        config = self._read_config()
        if TOKEN_FIELD not in config:
            return
        del config[TOKEN_FIELD]
        atomic_write_json(self.config_path, config)

    def store_secret(self, ref: str, value: str) -> None:
        """Store a named secret (e.g. a BYOK provider key) under ``secrets.<ref>``."""
        _validate(value)
        config = self._read_config()
        config.setdefault(SECRETS_FIELD, {})[ref] = self.encrypt(value)
        atomic_write_json(self.config_path, config)

    def get_secret(self, ref: str) -> str | None:
        stored = self._read_config().get(SECRETS_FIELD, {})
        if not isinstance(stored, dict):
            return None
        return self._decrypt_field(stored.get(ref))

    def delete_secret(self, ref: str) -> None:
        config = self._read_config()
        stored = config.get(SECRETS_FIELD)
        if isinstance(stored, dict) and ref in stored:
            del stored[ref]
            atomic_write_json(self.config_path, config)

    def encrypt(self, plaintext: str) -> str:
        key = self._load_or_create_key()
        iv = secrets.token_bytes(IV_BYTES)
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, stored: str) -> str | None:
        key = self._load_key()
        if key is None:
            return None
        parts = stored.split(":")
        if len(parts) != 3:
            return None
        try:
            iv, tag, ciphertext = (bytes.fromhex(p) for p in parts)
        except ValueError:
            return None
        if len(iv) != IV_BYTES or len(tag) != TAG_BYTES:
            return None
        try:
            return AESGCM(key).decrypt(iv, ciphertext + tag, None).decode("utf-8")
        except (InvalidTag, UnicodeDecodeError):
            logger.warning("Stored token failed authentication")
            return None

    # ── Private helpers ──────────────────────────────────────────────

    def _decrypt_field(self, value) -> str | None:
        if not isinstance(value, str) or not value:
            return None
        return self.decrypt(value)

    def _read_config(self) -> dict:
        if not self.config_path.exists():
            return {}
        try:
            data = json.loads(self.config_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Cannot read %s: %s", self.config_path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _load_key(self) -> bytes | None:
        try:
            key_hex = self.key_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Cannot read key file %s: %s", self.key_path, e)
            return None
        try:
            key = bytes.fromhex(key_hex)
        except ValueError:
            logger.warning("Key file %s is not hex", self.key_path)
            return None
        return key if len(key) == KEY_BYTES else None

    def _load_or_create_key(self) -> bytes:
        key = self._load_key()
        if key is not None:
            return key
        if self.key_path.exists():
            raise PermanentIOError(f"Key file {self.key_path} is unreadable or corrupt")

        key = secrets.token_bytes(KEY_BYTES)
        try:
            self.key_path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(key.hex())
            os.chmod(self.key_path, 0o400)
        except FileExistsError:
            # Another writer got there first; use its key.
            existing = self._load_key()
            if existing is None:
                raise PermanentIOError(f"Key file {self.key_path} is unreadable or corrupt")
            return existing
        except OSError as e:
            raise PermanentIOError(f"Cannot create key file {self.key_path}: {e}") from e
        return key


def _validate(token: str) -> None:
    if not isinstance(token, str) or not token:
        raise InvalidInputError("Token must be a non-empty string")
    if len(token) < MIN_TOKEN_LENGTH:
        raise InvalidInputError(f"Token must be at least {MIN_TOKEN_LENGTH} characters")
