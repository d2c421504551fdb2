"""Cryptographic primitives used by the encryption service.

Pure functions, no knowledge of documents or storage.
"""

from __future__ import annotations

import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32


def generate_key() -> bytes:
    """Fresh random 256-bit AES key (master keys and per-file DEKs)."""
    return AESGCM.generate_key(bit_length=KEY_SIZE * 8)


def derive_subkey(master: bytes, info: bytes, length: int = KEY_SIZE) -> bytes:
    """Derive a purpose-bound sub-key from the master key with HKDF-SHA256.

    No salt: the master key is random, not a passphrase.
    """
    hkdf = HKDF(algorithm=SHA256(), length=length, salt=None, info=info)
    return hkdf.derive(master)


def aes_gcm_encrypt(key: bytes, plaintext: bytes, aad: bytes | None = None) -> bytes:
    """AES-256-GCM encrypt. Returns nonce (12 bytes) || ciphertext+tag."""
    nonce = os.urandom(NONCE_SIZE)
    return nonce + AESGCM(key).encrypt(nonce, plaintext, aad)


def aes_gcm_decrypt(key: bytes, data: bytes, aad: bytes | None = None) -> bytes:
    """Reverse aes_gcm_encrypt.

    Raises cryptography.exceptions.InvalidTag on tampered data or a wrong key.
    """
    nonce, ciphertext = data[:NONCE_SIZE], data[NONCE_SIZE:]
    return AESGCM(key).decrypt(nonce, ciphertext, aad)
