"""
Identity module for the client's Ed25519 signing key.

This module provides:
- IdentityKey: wipeable in-memory holder for the 32-byte key
- load / load_identity: read plaintext, age-encrypted or ENC:v1 key files
- encrypt_private_key: produce an age passphrase file body
- seal_envelope / open_envelope: ENC:v1 AES-256-GCM envelopes
"""

from .key import KEY_SIZE, IdentityKey
from .loader import (
    is_encrypted_path,
    load,
    load_encrypted_private_key,
    load_identity,
    load_private_key,
)
from .security import (
    AGE_SUFFIX,
    ENCRYPTED_PREFIX,
    encrypt_private_key,
    open_envelope,
    seal_envelope,
)

__all__ = [
    # Key holder
    "IdentityKey",
    "KEY_SIZE",
    # Loading
    "load",
    "load_identity",
    "load_private_key",
    "load_encrypted_private_key",
    "is_encrypted_path",
    # Encryption
    "encrypt_private_key",
    "seal_envelope",
    "open_envelope",
    # Constants
    "AGE_SUFFIX",
    "ENCRYPTED_PREFIX",
]
