"""Tests for access-token encryption at rest."""

import pytest

from services.token_vault import (
    NONCE_LENGTH,
    TAG_LENGTH,
    EncryptionKeyNotConfiguredError,
    InvalidTokenFormatError,
    TokenAuthenticationError,
    TokenVault,
    decrypt_token,
    encrypt_token,
    generate_encryption_key,
    get_token_vault,
)
from tests.fixtures import TEST_ENCRYPTION_KEY


@pytest.fixture
def vault():
    return TokenVault(TEST_ENCRYPTION_KEY)


# ---------------------------------------------------------------------------
# Encrypt / decrypt
# ---------------------------------------------------------------------------


class TestEncryptDecrypt:
    def test_round_trip(self, vault):
        token = "access-sandbox-8ab976e6-64bc-4b38-98f7-731e7a349970"
        assert vault.decrypt(vault.encrypt(token)) == token

    def test_output_is_three_hex_segments(self, vault):
        parts = vault.encrypt("secret").split(":")

        assert len(parts) == 3
        nonce, tag, ciphertext = (bytes.fromhex(p) for p in parts)
        assert len(nonce) == NONCE_LENGTH
        assert len(tag) == TAG_LENGTH
        assert len(ciphertext) == len("secret")

    def test_same_plaintext_encrypts_differently(self, vault):
        assert vault.encrypt("same") != vault.encrypt("same")

    def test_unicode_and_empty_plaintext(self, vault):
        assert vault.decrypt(vault.encrypt("")) == ""
        assert vault.decrypt(vault.encrypt("tökén-✓")) == "tökén-✓"

    def test_module_helpers_use_configured_key(self):
        encrypted = encrypt_token("abc")
        assert TokenVault(TEST_ENCRYPTION_KEY).decrypt(encrypted) == "abc"
        assert decrypt_token(encrypted) == "abc"


# ---------------------------------------------------------------------------
# Malformed input
# ---------------------------------------------------------------------------


class TestDecryptFormatErrors:
    @pytest.mark.parametrize(
        "value",
        ["", "onlyone", "a:b", "a:b:c:d"],
    )
    def test_wrong_segment_count(self, vault, value):
        with pytest.raises(InvalidTokenFormatError):
            vault.decrypt(value)

    def test_non_hex_segment(self, vault):
        with pytest.raises(InvalidTokenFormatError):
            vault.decrypt("zz" * NONCE_LENGTH + ":" + "00" * TAG_LENGTH + ":00")

    def test_short_nonce(self, vault):
        with pytest.raises(InvalidTokenFormatError, match="nonce"):
            vault.decrypt("00" * 12 + ":" + "00" * TAG_LENGTH + ":00")

    def test_short_tag(self, vault):
        with pytest.raises(InvalidTokenFormatError, match="tag"):
            vault.decrypt("00" * NONCE_LENGTH + ":" + "00" * 8 + ":00")

    def test_format_error_is_not_authentication_error(self, vault):
        with pytest.raises(InvalidTokenFormatError) as exc_info:
            vault.decrypt("a:b")
        assert not isinstance(exc_info.value, TokenAuthenticationError)


# ---------------------------------------------------------------------------
# Tampering / wrong key
# ---------------------------------------------------------------------------


class TestDecryptAuthentication:
    def test_tampered_ciphertext(self, vault):
        nonce, tag, ciphertext = vault.encrypt("secret-token").split(":")
        flipped = format(int(ciphertext[:2], 16) ^ 0x01, "02x") + ciphertext[2:]

        with pytest.raises(TokenAuthenticationError):
            vault.decrypt(f"{nonce}:{tag}:{flipped}")

    def test_tampered_tag(self, vault):
        nonce, tag, ciphertext = vault.encrypt("secret-token").split(":")
        flipped = tag[:-2] + format(int(tag[-2:], 16) ^ 0xFF, "02x")

        with pytest.raises(TokenAuthenticationError):
            vault.decrypt(f"{nonce}:{flipped}:{ciphertext}")

    def test_wrong_key(self, vault):
        encrypted = vault.encrypt("secret-token")
        other = TokenVault(generate_encryption_key())

        with pytest.raises(TokenAuthenticationError):
            other.decrypt(encrypted)


# ---------------------------------------------------------------------------
# Key handling
# ---------------------------------------------------------------------------


class TestKeyConfiguration:
    def test_generated_key_is_64_hex_chars(self):
        key = generate_encryption_key()
        assert len(key) == 64
        assert len(bytes.fromhex(key)) == 32

    def test_generated_keys_differ(self):
        assert generate_encryption_key() != generate_encryption_key()

    def test_missing_key(self):
        with pytest.raises(EncryptionKeyNotConfiguredError):
            TokenVault("")

    def test_non_hex_key(self):
        with pytest.raises(EncryptionKeyNotConfiguredError, match="hex"):
            TokenVault("g" * 64)

    def test_wrong_length_key(self):
        with pytest.raises(EncryptionKeyNotConfiguredError, match="64 hex characters"):
            TokenVault("00" * 16)

    def test_unconfigured_setting_fails_on_use(self, monkeypatch):
        from config import settings

        monkeypatch.setattr(settings, "PLAID_ENCRYPTION_KEY", "")
        get_token_vault.cache_clear()

        with pytest.raises(EncryptionKeyNotConfiguredError):
            encrypt_token("abc")

    def test_vault_is_cached(self):
        assert get_token_vault() is get_token_vault()
