"""
Canonical encoding and Ed25519 signing of request messages.

The remote verifier rebuilds the exact byte string signed here and checks the
signature against it. A different key order, extra whitespace or a different
escape of a single character yields a signature that verifies nowhere, and the
only symptom is the cluster silently dropping the request. Keep this module
byte-compatible with Go's `encoding/json`:

- keys in the message's pinned `SIGNED_FIELDS` order (never sorted)
- no insignificant whitespace
- non-ASCII text emitted as UTF-8
- `<`, `>`, `&`, U+2028 and U+2029 escaped as `\\u003c`-style sequences
"""

import base64
import json
from typing import Any, Mapping, Optional, Sequence, TypeVar, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .exceptions import SigningError
from .identity.key import KEY_SIZE, IdentityKey
from .messages import SignedMessage

M = TypeVar("M", bound=SignedMessage)

KeyMaterial = Union[IdentityKey, bytes, bytearray]

_GO_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


def encode_fields(fields: Mapping[str, Any], order: Optional[Sequence[str]] = None) -> bytes:
    """
    Encode `fields` as compact JSON, keys in `order` (insertion order if None).

    Args:
        fields: Field values; enums must already be plain values.
        order: Explicit key order. Every name must be present in `fields`.

    Returns:
        bytes: UTF-8 encoding fed to Ed25519.
    """
    keys = list(order) if order is not None else list(fields.keys())
    missing = [name for name in keys if name not in fields]
    if missing:
        raise SigningError(f"Missing fields for canonical encoding: {missing}")

    ordered = {name: fields[name] for name in keys}
    text = json.dumps(ordered, separators=(",", ":"), ensure_ascii=False)
    # Structural JSON never contains these characters, so replacing over the
    # whole document only touches string contents.
    for char, escaped in _GO_ESCAPES:
        text = text.replace(char, escaped)
    return text.encode("utf-8")


def canonical_bytes(message: SignedMessage) -> bytes:
    """Exact bytes the verifier recomputes for `message` (signature excluded)."""
    if message.RAW_SIGNED_FIELD is not None:
        return str(getattr(message, message.RAW_SIGNED_FIELD)).encode("utf-8")
    return encode_fields(message.signed_values(), message.SIGNED_FIELDS)


def _private_key(key: KeyMaterial) -> Ed25519PrivateKey:
    raw = key.raw() if isinstance(key, IdentityKey) else bytes(key)
    if len(raw) != KEY_SIZE:
        raise SigningError(
            f"Invalid Ed25519 private key length: {len(raw)}, expected {KEY_SIZE} bytes"
        )
    return Ed25519PrivateKey.from_private_bytes(raw)


def sign_bytes(payload: bytes, key: KeyMaterial) -> bytes:
    """Ed25519 signature (64 bytes) over raw `payload`."""
    try:
        return _private_key(key).sign(payload)
    except SigningError:
        raise
    except Exception as exc:
        raise SigningError(f"Ed25519 signing error: {exc}") from exc


def sign_fields(
    fields: Mapping[str, Any],
    key: KeyMaterial,
    order: Optional[Sequence[str]] = None,
) -> bytes:
    """Sign the canonical encoding of an arbitrary field mapping."""
    return sign_bytes(encode_fields(fields, order), key)


def sign(message: SignedMessage, key: KeyMaterial) -> bytes:
    """Signature bytes over the canonical encoding of `message`."""
    return sign_bytes(canonical_bytes(message), key)


def attach_signature(message: M, key: KeyMaterial) -> M:
    """Return a copy of `message` whose base64 `signature` field is populated."""
    signature = sign(message, key)
    return message.model_copy(update={"signature": base64.b64encode(signature).decode("ascii")})


def verify(message: SignedMessage, public_key: bytes) -> bool:
    """Check a populated message signature the way the remote verifier does."""
    if not message.signature:
        return False
    try:
        signature = base64.b64decode(message.signature, validate=True)
        Ed25519PublicKey.from_public_bytes(public_key).verify(signature, canonical_bytes(message))
        return True
    except (InvalidSignature, ValueError):
        return False
