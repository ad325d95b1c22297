"""
Identity key loading: plaintext hex, age passphrase files and ENC:v1 envelopes.
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from ..exceptions import KeyLoadError
from .key import KEY_SIZE, IdentityKey
from .security import AGE_SUFFIX, ENCRYPTED_PREFIX, decrypt_age, open_envelope

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


def _read_bytes(path: PathLike) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise KeyLoadError(f"Failed to load private key: {exc}") from exc


def _decode_hex_key(key_hex: str) -> bytes:
    text = key_hex.strip()
    if text.startswith(("0x", "0X")):
        text = text[2:]
    try:
        raw = bytes.fromhex(text)
    except ValueError as exc:
        raise KeyLoadError("Private key file does not contain valid hex") from exc
    if len(raw) != KEY_SIZE:
        raise KeyLoadError(
            f"Invalid Ed25519 private key length: {len(raw)}, expected {KEY_SIZE} bytes"
        )
    return raw


def _decode_text(data: bytes) -> bytes:
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise KeyLoadError("Private key file is not hex text") from exc
    return _decode_hex_key(text)


def is_encrypted_path(path: PathLike, encrypted: Optional[bool] = None) -> bool:
    """An explicit flag wins; otherwise the `.age` suffix marks an encrypted file."""
    if encrypted is not None:
        return encrypted
    return str(path).endswith(AGE_SUFFIX)


def load_private_key(path: PathLike) -> bytes:
    """
    Load a plaintext private key.

    Args:
        path: Path to a file holding the hex-encoded 32-byte key.

    Returns:
        bytes: The raw key bytes.
    """
    return _decode_text(_read_bytes(path))


def load_encrypted_private_key(path: PathLike, passphrase: Optional[str]) -> bytes:
    """
    Load and decrypt an age-encrypted private key.

    Args:
        path: Path to the `.age` file.
        passphrase: Passphrase used when the file was encrypted.

    Returns:
        bytes: The raw key bytes.
    """
    if not passphrase:
        raise KeyLoadError("Encrypted key detected but no password provided")
    data = _read_bytes(path)
    return _decode_hex_key(decrypt_age(data, passphrase))


def load(
    path: PathLike,
    passphrase: Optional[str] = None,
    encrypted: Optional[bool] = None,
) -> bytes:
    """Load the raw 32 key bytes from `path`, decrypting when needed."""
    if is_encrypted_path(path, encrypted):
        logger.debug(f"Loading encrypted identity key from {path}")
        return load_encrypted_private_key(path, passphrase)

    data = _read_bytes(path)
    if data.lstrip().startswith(ENCRYPTED_PREFIX.encode("ascii")):
        logger.debug(f"Loading ENC:v1 identity key from {path}")
        envelope = data.decode("ascii", errors="replace").strip()
        return _decode_hex_key(open_envelope(envelope, passphrase or ""))

    logger.debug(f"Loading plaintext identity key from {path}")
    return _decode_text(data)


def load_identity(
    path: PathLike,
    passphrase: Optional[str] = None,
    encrypted: Optional[bool] = None,
) -> IdentityKey:
    """Load the key at `path` into a wipeable `IdentityKey`."""
    return IdentityKey(load(path, passphrase=passphrase, encrypted=encrypted))
