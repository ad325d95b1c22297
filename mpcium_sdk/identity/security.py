"""
Passphrase encryption for identity key files.

Two envelopes are understood, both wrapping the hex text of the 32-byte key:

- age passphrase files (scrypt recipient), the format produced by the node
  cluster's own tooling. Handled by `pyrage`.
- `ENC:v1:` envelopes, `ENC:v1:<base64url(salt||iv||ciphertext)>` with an
  AES-256-GCM key derived through PBKDF2-HMAC-SHA256 and the prefix bound
  as associated data.
"""

import base64
import binascii
import os
from typing import NamedTuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pyrage import passphrase as age_passphrase

from ..exceptions import KeyLoadError

ENCRYPTED_PREFIX = "ENC:v1:"
AGE_SUFFIX = ".age"
_SALT_BYTES = 16
_IV_BYTES = 12
_TAG_BYTES = 16
_KDF_ITERATIONS = 200_000
_AAD = ENCRYPTED_PREFIX.encode("ascii")


def _key_hex(private_key: Union[bytes, bytearray, str]) -> str:
    if isinstance(private_key, (bytes, bytearray)):
        return bytes(private_key).hex()
    return private_key.strip()


def encrypt_private_key(private_key: Union[bytes, bytearray, str], passphrase: str) -> bytes:
    """
    Encrypt a private key into an age passphrase file body.

    Args:
        private_key: Raw key bytes or their hex text.
        passphrase: Passphrase protecting the file.

    Returns:
        bytes: Binary age payload, ready to be written to a `.age` file.
    """
    if not private_key:
        raise ValueError("private_key is required for encryption.")
    if not passphrase:
        raise ValueError("passphrase is required for encryption.")
    return age_passphrase.encrypt(_key_hex(private_key).encode("utf-8"), passphrase)


def decrypt_age(data: bytes, passphrase: str) -> str:
    """Decrypt an age passphrase payload and return the enclosed hex text."""
    if not passphrase:
        raise KeyLoadError("Encrypted key detected but no password provided")
    try:
        plaintext = age_passphrase.decrypt(data, passphrase)
        return plaintext.decode("utf-8").strip()
    except Exception as exc:
        raise KeyLoadError("Failed to decrypt key file; verify the password.") from exc


class _Envelope(NamedTuple):
    salt: bytes
    iv: bytes
    ciphertext: bytes

    @classmethod
    def parse(cls, value: str) -> "_Envelope":
        if not value or not value.startswith(ENCRYPTED_PREFIX):
            raise KeyLoadError("Encrypted value must start with ENC:v1:")
        try:
            blob = base64.urlsafe_b64decode(value[len(ENCRYPTED_PREFIX) :])
        except (binascii.Error, ValueError) as exc:
            raise KeyLoadError("ENC:v1 payload is not valid base64") from exc
        if len(blob) < _SALT_BYTES + _IV_BYTES + _TAG_BYTES:
            raise KeyLoadError("ENC:v1 payload is truncated")
        return cls(blob[:_SALT_BYTES], blob[_SALT_BYTES : _SALT_BYTES + _IV_BYTES], blob[_SALT_BYTES + _IV_BYTES :])

    def render(self) -> str:
        return ENCRYPTED_PREFIX + base64.urlsafe_b64encode(self.salt + self.iv + self.ciphertext).decode("ascii")


def _cipher(password: str, salt: bytes) -> AESGCM:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=_KDF_ITERATIONS)
    return AESGCM(kdf.derive(password.encode("utf-8")))


def seal_envelope(private_key: Union[bytes, bytearray, str], password: str) -> str:
    """
    Wrap a private key in an `ENC:v1:` envelope.

    The version prefix is bound as associated data, so an envelope cannot be
    relabelled without failing authentication.
    """
    if not private_key:
        raise ValueError("private_key is required for encryption.")
    if not password:
        raise ValueError("password is required for encryption.")

    salt, iv = os.urandom(_SALT_BYTES), os.urandom(_IV_BYTES)
    sealed = _cipher(password, salt).encrypt(iv, _key_hex(private_key).encode("utf-8"), _AAD)
    return _Envelope(salt, iv, sealed).render()


def open_envelope(enc_value: str, password: str) -> str:
    """Decrypt a value produced by `seal_envelope` and return the hex key text."""
    envelope = _Envelope.parse(enc_value)
    if not password:
        raise KeyLoadError("Encrypted key detected but no password provided")

    try:
        plaintext = _cipher(password, envelope.salt).decrypt(envelope.iv, envelope.ciphertext, _AAD)
    except InvalidTag as exc:
        raise KeyLoadError("Failed to decrypt private key; verify the password.") from exc
    try:
        return plaintext.decode("utf-8").strip()
    except UnicodeDecodeError as exc:
        raise KeyLoadError("Decrypted key is not text") from exc
