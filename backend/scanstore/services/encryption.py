"""Envelope encryption for document files at rest.

Each payload gets a fresh DEK; the DEK is wrapped by a KEK derived (HKDF)
from a random master key kept in SecureStorage. Encrypted files are laid
out as::

    b"SCV1" || wrapped DEK (nonce 12B + key 32B + tag 16B) || nonce + ciphertext+tag
"""

from __future__ import annotations

import base64
import logging
from pathlib import Path

from cryptography.exceptions import InvalidTag

from scanstore.services.secure_storage import SecureStorage, SecureStorageError
from scanstore.utils.crypto import (
    KEY_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    aes_gcm_decrypt,
    aes_gcm_encrypt,
    derive_subkey,
    generate_key,
)

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when a payload cannot be encrypted or decrypted."""


class EncryptionService:
    MAGIC = b"SCV1"
    MASTER_KEY_NAME = "encryption_master_key"
    WRAPPED_DEK_SIZE = NONCE_SIZE + KEY_SIZE + TAG_SIZE
    # Bytes an encrypted payload adds on top of its plaintext
    OVERHEAD = len(MAGIC) + WRAPPED_DEK_SIZE + NONCE_SIZE + TAG_SIZE

    __slots__ = ("_storage", "_kek")

    def __init__(self, storage: SecureStorage) -> None:
        self._storage = storage
        self._kek: bytes | None = None

    def is_ready(self) -> bool:
        """True once a master key exists."""
        try:
            return self._storage.contains(self.MASTER_KEY_NAME)
        except SecureStorageError:
            logger.warning("Secure storage unreadable", exc_info=True)
            return False

    def ensure_key_initialized(self) -> bool:
        """Create the master key if missing. Returns True when one was created."""
        if self._storage.contains(self.MASTER_KEY_NAME):
            return False
        master = generate_key()
        self._storage.set(self.MASTER_KEY_NAME, base64.b64encode(master).decode("ascii"))
        self._kek = None
        logger.info("Generated new master encryption key")
        return True

    def encrypt(self, plaintext: bytes) -> bytes:
        dek = generate_key()
        wrapped = aes_gcm_encrypt(self._key_encryption_key(), dek, aad=self.MAGIC)
        return self.MAGIC + wrapped + aes_gcm_encrypt(dek, plaintext, aad=self.MAGIC)

    def decrypt(self, blob: bytes) -> bytes:
        header_end = len(self.MAGIC) + self.WRAPPED_DEK_SIZE
        if not blob.startswith(self.MAGIC) or len(blob) < header_end + NONCE_SIZE + TAG_SIZE:
            raise EncryptionError("Not an encrypted scanstore payload")
        wrapped = blob[len(self.MAGIC):header_end]
        try:
            dek = aes_gcm_decrypt(self._key_encryption_key(), wrapped, aad=self.MAGIC)
            return aes_gcm_decrypt(dek, blob[header_end:], aad=self.MAGIC)
        except InvalidTag as exc:
            raise EncryptionError("Payload failed authentication (tampered or wrong key)") from exc

    def encrypt_file(self, source: Path | str, dest: Path | str) -> None:
        src, dst = self._check_paths(source, dest)
        try:
            data = src.read_bytes()
        except OSError as exc:
            raise EncryptionError(f"Cannot read {src}") from exc
        self._write(dst, self.encrypt(data))

    def decrypt_file(self, source: Path | str, dest: Path | str) -> None:
        src, dst = self._check_paths(source, dest)
        try:
            blob = src.read_bytes()
        except OSError as exc:
            raise EncryptionError(f"Cannot read {src}") from exc
        self._write(dst, self.decrypt(blob))

    def decrypt_file_bytes(self, source: Path | str) -> bytes:
        """Decrypt a file straight into memory."""
        if not str(source):
            raise EncryptionError("Source path is empty")
        try:
            blob = Path(source).read_bytes()
        except OSError as exc:
            raise EncryptionError(f"Cannot read {source}") from exc
        return self.decrypt(blob)

    def plaintext_size(self, path: Path | str) -> int:
        """Size of an encrypted file's content, read from its length alone."""
        try:
            return max(0, Path(path).stat().st_size - self.OVERHEAD)
        except OSError as exc:
            raise EncryptionError(f"Cannot stat {path}") from exc

    def _key_encryption_key(self) -> bytes:
        if self._kek is None:
            try:
                encoded = self._storage.get(self.MASTER_KEY_NAME)
            except SecureStorageError as exc:
                raise EncryptionError("Secure storage unreadable") from exc
            if encoded is None:
                raise EncryptionError("Encryption key not initialized")
            self._kek = derive_subkey(base64.b64decode(encoded), b"scanstore-kek")
        return self._kek

    @staticmethod
    def _check_paths(source: Path | str, dest: Path | str) -> tuple[Path, Path]:
        if not str(source) or not str(dest):
            raise EncryptionError("Source and destination paths are required")
        src, dst = Path(source), Path(dest)
        if src.resolve() == dst.resolve():
            raise EncryptionError("Source and destination must differ")
        return src, dst

    @staticmethod
    def _write(dest: Path, data: bytes) -> None:
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(data)
        except OSError as exc:
            raise EncryptionError(f"Cannot write {dest}") from exc
