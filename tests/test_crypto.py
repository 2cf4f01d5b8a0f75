"""Tests for portkey.vault.crypto - Argon2id derivation and AES-GCM."""

import pytest
from argon2.exceptions import HashingError

from portkey.vault import crypto
from portkey.vault.crypto import (
    KEY_LENGTH, NONCE_LENGTH, SALT_LENGTH, MasterKey, generate_salt,
)
from portkey.vault.errors import AuthError, KeyDerivationError


class TestDerive:
    def test_deterministic(self):
        salt = generate_salt()
        k1 = MasterKey.derive("correct-horse", salt)
        k2 = MasterKey.derive(b"correct-horse", salt)
        assert bytes(k1._key) == bytes(k2._key)
        assert len(k1._key) == KEY_LENGTH

    def test_salt_changes_key(self):
        k1 = MasterKey.derive("pw", b"a" * SALT_LENGTH)
        k2 = MasterKey.derive("pw", b"b" * SALT_LENGTH)
        assert bytes(k1._key) != bytes(k2._key)

    def test_wrong_salt_length(self):
        with pytest.raises(KeyDerivationError):
            MasterKey.derive("pw", b"short")

    def test_primitive_failure(self, monkeypatch):
        def boom(**kwargs):
            raise HashingError("memory allocation error")

        monkeypatch.setattr(crypto, "hash_secret_raw", boom)
        with pytest.raises(KeyDerivationError):
            MasterKey.derive("pw", generate_salt())

    def test_salt_is_random(self):
        assert generate_salt() != generate_salt()
        assert len(generate_salt()) == SALT_LENGTH


class TestCipher:
    @pytest.fixture
    def key(self):
        return MasterKey.derive("correct-horse", generate_salt())

    def test_round_trip(self, key):
        nonce, ciphertext = key.encrypt(b"secret data")
        assert len(nonce) == NONCE_LENGTH
        assert b"secret data" not in ciphertext
        assert key.decrypt(nonce, ciphertext) == b"secret data"

    def test_fresh_nonce_per_call(self, key):
        n1, c1 = key.encrypt(b"same")
        n2, c2 = key.encrypt(b"same")
        assert n1 != n2
        assert c1 != c2

    def test_wrong_key(self, key):
        other = MasterKey.derive("wrong", generate_salt())
        nonce, ciphertext = key.encrypt(b"secret")
        with pytest.raises(AuthError):
            other.decrypt(nonce, ciphertext)

    def test_tampered_ciphertext(self, key):
        nonce, ciphertext = key.encrypt(b"secret")
        tampered = bytes([ciphertext[0] ^ 0x01]) + ciphertext[1:]
        with pytest.raises(AuthError):
            key.decrypt(nonce, tampered)

    def test_truncated_ciphertext(self, key):
        nonce, ciphertext = key.encrypt(b"secret")
        with pytest.raises(AuthError):
            key.decrypt(nonce, ciphertext[:5])

    def test_bad_nonce_length(self, key):
        nonce, ciphertext = key.encrypt(b"secret")
        with pytest.raises(AuthError):
            key.decrypt(nonce[:8], ciphertext)

    def test_auth_errors_share_message(self, key):
        other = MasterKey.derive("wrong", generate_salt())
        nonce, ciphertext = key.encrypt(b"secret")
        with pytest.raises(AuthError) as wrong_key:
            other.decrypt(nonce, ciphertext)
        with pytest.raises(AuthError) as tampered:
            key.decrypt(nonce, ciphertext[:-1] + bytes([ciphertext[-1] ^ 0xFF]))
        assert str(wrong_key.value) == str(tampered.value) == AuthError.MESSAGE


class TestWipe:
    def test_wipe_zeroes_key(self):
        key = MasterKey.derive("pw", generate_salt())
        buf = key._key
        key.wipe()
        assert key.wiped
        assert buf == bytearray(KEY_LENGTH)

    def test_wiped_key_refuses_use(self):
        key = MasterKey.derive("pw", generate_salt())
        key.wipe()
        with pytest.raises(KeyDerivationError):
            key.encrypt(b"data")

    def test_wipe_twice(self):
        key = MasterKey.derive("pw", generate_salt())
        key.wipe()
        key.wipe()
        assert key.wiped

    def test_context_manager(self):
        with MasterKey.derive("pw", generate_salt()) as key:
            nonce, ciphertext = key.encrypt(b"x")
            assert key.decrypt(nonce, ciphertext) == b"x"
        assert key.wiped

    def test_repr_has_no_key_material(self):
        key = MasterKey.derive("pw", generate_salt())
        assert repr(key) == "<MasterKey active>"
