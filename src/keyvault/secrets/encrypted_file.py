"""AES-256-GCM encrypted JSON file store for credentials.

Used whenever the OS credential manager is unavailable, fails, or is forced
off. Each service gets its own cache directory holding:

``key.bin``
    32 random bytes generated on first use. Owner-only permissions where
    the OS supports them. Deleting it makes every stored secret unreadable.
``credentials.json``
    JSON object mapping account -> base64(nonce || tag || ciphertext).

Every secret is encrypted independently with a fresh 12-byte nonce. A blob
that fails authentication (wrong key, tampering, truncation) reads back as
"not found".
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import pathlib
import tempfile
from contextlib import contextmanager
from typing import Iterator

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from keyvault.config import StoreConfig
from keyvault.errors import DecryptionError, PersistenceFailure
from keyvault.secrets.file_lock import FileLock

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


# ---------------------------------------------------------------------------
# Blob encoding
# ---------------------------------------------------------------------------

def encrypt_secret(key: bytes, secret: str) -> str:
    """Encrypt *secret* and return base64(nonce || tag || ciphertext)."""
    nonce = os.urandom(NONCE_SIZE)
    sealed = AESGCM(key).encrypt(nonce, secret.encode("utf-8"), None)
    # AESGCM appends the tag; the stored layout puts it before the ciphertext
    ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
    return base64.b64encode(nonce + tag + ciphertext).decode("ascii")


def decrypt_secret(key: bytes, blob: str) -> str:
    """Verify and decrypt a blob produced by ``encrypt_secret``.

    Raises
    ------
    DecryptionError
        If the blob is malformed, the key is wrong, or the tag does not verify.
    """
    try:
        raw = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError("blob is not valid base64") from exc
    if len(raw) < NONCE_SIZE + TAG_SIZE:
        raise DecryptionError("blob is truncated")
    nonce = raw[:NONCE_SIZE]
    tag = raw[NONCE_SIZE : NONCE_SIZE + TAG_SIZE]
    ciphertext = raw[NONCE_SIZE + TAG_SIZE :]
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
        return plaintext.decode("utf-8")
    except InvalidTag as exc:
        raise DecryptionError("authentication tag mismatch") from exc
    except ValueError as exc:
        # Bad key length or undecodable plaintext
        raise DecryptionError(str(exc)) from exc


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------

def _restrict_permissions(path: pathlib.Path) -> None:
    try:
        path.chmod(0o600)
    except OSError as exc:
        logger.warning("Could not set permissions on %s: %s", path, exc)


def _atomic_write(path: pathlib.Path, data: bytes) -> None:
    """Write *data* to a sibling temp file and rename it over *path*."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
    _restrict_permissions(path)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class AuthenticatedCacheStore:
    """Encrypted on-disk credential mapping for one service.

    Nothing is cached in memory: every call re-reads the key and the mapping
    so that writes from other processes are visible immediately.

    Parameters
    ----------
    config:
        Per-service configuration supplying the cache directory and file paths.
    """

    def __init__(self, config: StoreConfig) -> None:
        self._config = config
        self._dir = config.cache_dir
        self._key_file = config.key_file
        self._cache_file = config.cache_file
        self._lock_file = config.lock_file

    @property
    def cache_dir(self) -> pathlib.Path:
        return self._dir

    @property
    def key_file(self) -> pathlib.Path:
        return self._key_file

    @property
    def cache_file(self) -> pathlib.Path:
        return self._cache_file

    # -- initialisation ----------------------------------------------------

    def _ensure_dir(self) -> None:
        try:
            self._dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceFailure(f"cannot create cache directory {self._dir}: {exc}") from exc

    def _create_missing_files(self) -> None:
        """Create the key and an empty mapping if absent. Caller holds the lock."""
        try:
            if not self._key_file.exists():
                logger.info("Generating new encryption key at %s", self._key_file)
                _atomic_write(self._key_file, os.urandom(KEY_SIZE))
            if not self._cache_file.exists():
                _atomic_write(self._cache_file, b"{}")
        except OSError as exc:
            raise PersistenceFailure(f"cannot initialise cache in {self._dir}: {exc}") from exc

    @contextmanager
    def _locked(self) -> Iterator[None]:
        try:
            lock = FileLock(self._lock_file)
            lock.acquire()
        except OSError as exc:
            raise PersistenceFailure(f"cannot lock {self._lock_file}: {exc}") from exc
        try:
            yield
        finally:
            lock.release()

    def ensure_initialized(self) -> None:
        """Create the cache directory, key file and empty mapping as needed.

        Idempotent. Permission hardening is best-effort and only logs a
        warning when the platform refuses it.
        """
        self._ensure_dir()
        if self._key_file.exists() and self._cache_file.exists():
            return
        with self._locked():
            self._create_missing_files()

    # -- raw access --------------------------------------------------------

    def _read_key(self) -> bytes:
        try:
            return self._key_file.read_bytes()
        except OSError as exc:
            raise PersistenceFailure(f"cannot read key file {self._key_file}: {exc}") from exc

    def _read_mapping(self) -> dict[str, str]:
        try:
            text = self._cache_file.read_text(encoding="utf-8")
        except OSError as exc:
            raise PersistenceFailure(f"cannot read {self._cache_file}: {exc}") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise PersistenceFailure(f"{self._cache_file} is not valid JSON") from exc
        if not isinstance(data, dict) or not all(isinstance(v, str) for v in data.values()):
            raise PersistenceFailure(f"{self._cache_file} does not hold an account mapping")
        return data

    def _write_mapping(self, mapping: dict[str, str]) -> None:
        payload = json.dumps(mapping, indent=2, sort_keys=True).encode("utf-8")
        try:
            _atomic_write(self._cache_file, payload)
        except OSError as exc:
            raise PersistenceFailure(f"cannot write {self._cache_file}: {exc}") from exc

    # -- operations --------------------------------------------------------

    def put(self, account: str, secret: str) -> None:
        """Encrypt *secret* and store it under *account*, replacing any prior value."""
        self._ensure_dir()
        with self._locked():
            self._create_missing_files()
            key = self._read_key()
            if len(key) != KEY_SIZE:
                raise PersistenceFailure(
                    f"key file {self._key_file} holds {len(key)} bytes, expected {KEY_SIZE}"
                )
            mapping = self._read_mapping()
            mapping[account] = encrypt_secret(key, secret)
            self._write_mapping(mapping)

    def get(self, account: str) -> str | None:
        """Return the decrypted secret, or None if absent or undecryptable."""
        self.ensure_initialized()
        blob = self._read_mapping().get(account)
        if blob is None:
            return None
        try:
            return decrypt_secret(self._read_key(), blob)
        except DecryptionError as exc:
            logger.debug("Treating undecryptable entry for %r as missing: %s", account, exc)
            return None

    def delete(self, account: str) -> None:
        """Remove *account* if present. Absent accounts are a no-op."""
        self._ensure_dir()
        with self._locked():
            self._create_missing_files()
            mapping = self._read_mapping()
            if account not in mapping:
                return
            del mapping[account]
            self._write_mapping(mapping)

    def list_accounts(self) -> list[str]:
        """Return the stored account identifiers, sorted."""
        self.ensure_initialized()
        return sorted(self._read_mapping())
