"""
In-memory holder for the client's Ed25519 identity key.

Security model:
- The 32 raw key bytes live in a mutable `bytearray`, allowing explicit wiping.
- The key is never written to os.environ, logged, or persisted.
- Reads are guarded by a lock so concurrent signing calls see either the
  full key or a wiped holder, never a partially zeroed buffer.

Usage:
    identity = IdentityKey(raw_bytes)
    signature = identity.sign(payload)
    identity.wipe()  # zero-fill when the client is cleaned up
"""

from __future__ import annotations

import threading
from typing import Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from ..exceptions import KeyLoadError, SigningError

KEY_SIZE = 32


class IdentityKey:
    """
    Wipeable container for a 32-byte Ed25519 private key (seed).

    Thread Safety:
        All public methods acquire a lock, making the holder safe to share
        across concurrent signing calls.

    Limitations:
        - `raw()` returns immutable `bytes` which cannot be wiped; the signer
          uses it only for the duration of a single signature.
        - The underlying crypto library may keep its own copies.
    """

    def __init__(self, raw_key: Union[bytes, bytearray]):
        if not isinstance(raw_key, (bytes, bytearray)):
            raise KeyLoadError(f"Identity key must be bytes; got {type(raw_key).__name__}")
        if len(raw_key) != KEY_SIZE:
            raise KeyLoadError(
                f"Invalid Ed25519 private key length: {len(raw_key)}, expected {KEY_SIZE} bytes"
            )
        self._key = bytearray(raw_key)
        self._lock = threading.Lock()
        self._wiped = False

    @property
    def wiped(self) -> bool:
        with self._lock:
            return self._wiped

    def raw(self) -> bytes:
        """Return a copy of the raw key bytes."""
        with self._lock:
            if self._wiped:
                raise SigningError("Identity key has been wiped")
            return bytes(self._key)

    def sign(self, payload: bytes) -> bytes:
        """Produce a deterministic Ed25519 signature over `payload`."""
        private_key = Ed25519PrivateKey.from_private_bytes(self.raw())
        return private_key.sign(payload)

    @property
    def public_key(self) -> bytes:
        """Raw 32-byte Ed25519 public key matching this identity."""
        private_key = Ed25519PrivateKey.from_private_bytes(self.raw())
        return private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def wipe(self) -> None:
        """Zero-fill the key in place. Further use raises SigningError."""
        with self._lock:
            for i in range(len(self._key)):
                self._key[i] = 0
            self._wiped = True

    def __repr__(self) -> str:
        state = "wiped" if self.wiped else "loaded"
        return f"<IdentityKey {state}>"
