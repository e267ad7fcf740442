import base64

import pytest

from tenant_rag.crypto import SecretCipher, generate_key, is_encrypted, secure_compare
from tenant_rag.errors import SecretsDecryptionError


@pytest.fixture
def cipher() -> SecretCipher:
    return SecretCipher.from_base64(generate_key())


def test_encrypt_produces_envelope(cipher):
    envelope = cipher.encrypt("postgres://acme:secret@db/acme")

    assert is_encrypted(envelope)
    assert envelope.count(":") == 2
    assert cipher.decrypt(envelope) == "postgres://acme:secret@db/acme"


def test_encrypt_uses_fresh_nonce(cipher):
    assert cipher.encrypt("same") != cipher.encrypt("same")


def test_wrong_key_fails_uniformly(cipher):
    envelope = cipher.encrypt("sk-live")
    other = SecretCipher.from_base64(generate_key())

    with pytest.raises(SecretsDecryptionError) as wrong_key:
        other.decrypt(envelope)
    with pytest.raises(SecretsDecryptionError) as malformed:
        cipher.decrypt("not-an-envelope")

    assert wrong_key.value.message == malformed.value.message == "Unable to decrypt tenant secrets"


def test_tampered_ciphertext_is_rejected(cipher):
    nonce, tag, ciphertext = cipher.encrypt("sk-live").split(":")
    flipped = bytearray(base64.b64decode(ciphertext))
    flipped[0] ^= 0x01
    tampered = ":".join([nonce, tag, base64.b64encode(bytes(flipped)).decode("ascii")])

    with pytest.raises(SecretsDecryptionError):
        cipher.decrypt(tampered)


def test_master_key_validation():
    with pytest.raises(ValueError):
        SecretCipher.from_base64(None)
    with pytest.raises(ValueError):
        SecretCipher.from_base64("not base64!")
    with pytest.raises(ValueError):
        SecretCipher(b"short")


def test_secure_compare():
    assert secure_compare("abc", "abc")
    assert not secure_compare("abc", "abd")
    assert not secure_compare(None, "abc")
    assert not is_encrypted("plain-text")


@pytest.mark.parametrize(
    "plaintext",
    ["", "postgres://acme:secret@db/acme", "clé secrète 密钥 🔑", "x" * 10_000],
    ids=["empty", "dsn", "unicode", "long"],
)
def test_round_trip(cipher, plaintext):
    assert cipher.decrypt(cipher.encrypt(plaintext)) == plaintext


def _flip_first_byte(part: str) -> str:
    raw = bytearray(base64.b64decode(part))
    raw[0] ^= 0x01
    return base64.b64encode(bytes(raw)).decode("ascii")


@pytest.mark.parametrize("position", [0, 1, 2], ids=["nonce", "tag", "ciphertext"])
def test_tampering_any_part_is_rejected(cipher, position):
    parts = cipher.encrypt("sk-live").split(":")
    parts[position] = _flip_first_byte(parts[position])

    with pytest.raises(SecretsDecryptionError) as excinfo:
        cipher.decrypt(":".join(parts))

    assert excinfo.value.message == "Unable to decrypt tenant secrets"


def test_truncated_tag_is_rejected(cipher):
    nonce, tag, ciphertext = cipher.encrypt("sk-live").split(":")
    short_tag = base64.b64encode(base64.b64decode(tag)[:8]).decode("ascii")

    with pytest.raises(SecretsDecryptionError):
        cipher.decrypt(":".join([nonce, short_tag, ciphertext]))
