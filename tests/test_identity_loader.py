import pytest

from mpcium_sdk.exceptions import KeyLoadError, SigningError
from mpcium_sdk.identity import (
    IdentityKey,
    encrypt_private_key,
    is_encrypted_path,
    load,
    load_identity,
    open_envelope,
    seal_envelope,
)


def _write(tmp_path, name, content):
    path = tmp_path / name
    if isinstance(content, str):
        path.write_text(content)
    else:
        path.write_bytes(content)
    return path


def test_plaintext_hex_key_loads(tmp_path, key_bytes):
    path = _write(tmp_path, "event_initiator.key", key_bytes.hex() + "\n")

    assert load(path) == key_bytes


def test_plaintext_hex_key_accepts_0x_prefix(tmp_path, key_bytes):
    path = _write(tmp_path, "event_initiator.key", "0x" + key_bytes.hex())

    assert load(str(path)) == key_bytes


def test_31_byte_key_fails_construction(tmp_path):
    path = _write(tmp_path, "short.key", (b"\x01" * 31).hex())

    with pytest.raises(KeyLoadError, match="length: 31"):
        load_identity(path)


def test_non_hex_content_fails(tmp_path):
    path = _write(tmp_path, "bad.key", "not-a-hex-key")

    with pytest.raises(KeyLoadError):
        load(path)


def test_binary_content_fails(tmp_path):
    path = _write(tmp_path, "bad.key", b"\xff\xfe\x00")

    with pytest.raises(KeyLoadError):
        load(path)


def test_missing_file_fails(tmp_path):
    with pytest.raises(KeyLoadError, match="Failed to load private key"):
        load(tmp_path / "missing.key")


def test_encrypted_flag_wins_over_suffix():
    assert is_encrypted_path("key.age") is True
    assert is_encrypted_path("key.hex") is False
    assert is_encrypted_path("key.hex", encrypted=True) is True
    assert is_encrypted_path("key.age", encrypted=False) is False


def test_encrypted_key_requires_passphrase(tmp_path):
    path = _write(tmp_path, "event_initiator.key.age", b"age-encryption.org/v1\n")

    with pytest.raises(KeyLoadError, match="no password"):
        load(path)


def test_age_key_round_trip(tmp_path, key_bytes):
    path = _write(tmp_path, "event_initiator.key.age", encrypt_private_key(key_bytes, "correct horse"))

    assert load(path, passphrase="correct horse") == key_bytes

    with pytest.raises(KeyLoadError, match="verify the password"):
        load(path, passphrase="wrong")


def test_enc_v1_envelope_detected_by_content(tmp_path, key_bytes):
    path = _write(tmp_path, "event_initiator.key", seal_envelope(key_bytes, "pwd"))

    assert load(path, passphrase="pwd") == key_bytes

    with pytest.raises(KeyLoadError):
        load(path)
    with pytest.raises(KeyLoadError):
        load(path, passphrase="other")


@pytest.mark.parametrize("value", ["ENC:v1:AAAA", "ENC:v1:not base64!", "ENC:v2:AAAA"])
def test_malformed_enc_v1_envelope_fails(value):
    with pytest.raises(KeyLoadError):
        open_envelope(value, "pwd")


def test_enc_v1_envelope_is_salted(key_bytes):
    first = seal_envelope(key_bytes, "pwd")
    second = seal_envelope(key_bytes, "pwd")

    assert first != second
    assert open_envelope(first, "pwd") == open_envelope(second, "pwd") == key_bytes.hex()


def test_identity_key_rejects_wrong_length():
    with pytest.raises(KeyLoadError):
        IdentityKey(b"\x00" * 31)
    with pytest.raises(KeyLoadError):
        IdentityKey("00" * 32)


def test_identity_key_wipe(key_bytes):
    identity = IdentityKey(key_bytes)
    assert len(identity.public_key) == 32
    assert key_bytes.hex() not in repr(identity)

    identity.wipe()

    assert identity.wiped
    assert repr(identity) == "<IdentityKey wiped>"
    with pytest.raises(SigningError):
        identity.raw()
    with pytest.raises(SigningError):
        identity.sign(b"payload")
