"""
Unit tests for utils.keys module.

Tests:
- validate_private_key_hex() length, alphabet and curve-range checks
- Public key derivation and npub/nsec encoding
- Deterministic BIP-340 signatures
- Environment variable loading
"""

import pytest

from nostrpapers.utils.keys import (
    ENV_PRIVATE_KEY,
    derive_public_key,
    generate_private_key,
    load_private_key_from_env,
    npub_encode,
    nsec_encode,
    parse_public_key,
    schnorr_sign,
    validate_private_key_hex,
)


KEY_ONE = "0" * 63 + "1"  # pragma: allowlist secret
KEY_THREE = "0" * 63 + "3"  # pragma: allowlist secret
G_X = "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
CURVE_ORDER = "fffffffffffffffffffffffffffffffebaaedce6af48a03bbfd25e8cd0364141"


class TestValidatePrivateKeyHex:
    """Only 64 hex characters naming a valid secp256k1 scalar are accepted."""

    def test_valid_key_lowercased(self) -> None:
        assert validate_private_key_hex(KEY_ONE.upper()) == KEY_ONE

    @pytest.mark.parametrize(
        "value",
        [
            KEY_ONE[:-1],  # 63 chars
            KEY_ONE + "0",  # 65 chars
            "g" * 64,
            " " + KEY_ONE[1:],
            "",
        ],
    )
    def test_malformed(self, value: str) -> None:
        with pytest.raises(ValueError, match="64 hex"):
            validate_private_key_hex(value)

    @pytest.mark.parametrize("value", ["0" * 64, CURVE_ORDER])
    def test_out_of_range(self, value: str) -> None:
        with pytest.raises(ValueError):
            validate_private_key_hex(value)


class TestDerivation:
    """Public keys, bech32 encodings and generation."""

    def test_generator_point(self) -> None:
        assert derive_public_key(KEY_ONE) == G_X

    def test_generated_keys_are_distinct_and_valid(self) -> None:
        a, b = generate_private_key(), generate_private_key()
        assert a != b
        assert validate_private_key_hex(a) == a

    def test_npub_round_trip(self) -> None:
        npub = npub_encode(G_X)
        assert npub.startswith("npub1")
        assert parse_public_key(npub) == G_X

    def test_parse_hex_public_key(self) -> None:
        assert parse_public_key(G_X.upper()) == G_X

    def test_parse_invalid_public_key(self) -> None:
        with pytest.raises(ValueError):
            parse_public_key("npub1notakey")

    def test_nsec(self) -> None:
        assert nsec_encode(KEY_ONE).startswith("nsec1")


class TestSchnorrSign:
    """BIP-340 signatures with no auxiliary randomness."""

    def test_bip340_vector_0(self) -> None:
        assert derive_public_key(KEY_THREE) == (
            "f9308a019258c31049344f85f89d5229b531c845836f99b08601f113bce036f9"
        )
        assert schnorr_sign(KEY_THREE, "00" * 32) == (
            "e907831f80848d1069a5371b402410364bdf1c5f8307b0084c55f1ce2dca8215"
            "25f66a4a85ea8b71e482a74f382d2ce5ebeee8fdb2172f477df4900d310536c0"
        )

    def test_deterministic(self) -> None:
        message = "ab" * 32
        assert schnorr_sign(KEY_ONE, message) == schnorr_sign(KEY_ONE, message)

    def test_different_messages(self) -> None:
        assert schnorr_sign(KEY_ONE, "00" * 32) != schnorr_sign(KEY_ONE, "01" * 32)


class TestLoadPrivateKeyFromEnv:
    """Environment variable lookup."""

    def test_unset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(ENV_PRIVATE_KEY, raising=False)
        assert load_private_key_from_env() is None

    def test_empty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(ENV_PRIVATE_KEY, "")
        assert load_private_key_from_env() is None

    def test_stripped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CUSTOM_KEY", f"  {KEY_ONE}\n")
        assert load_private_key_from_env("CUSTOM_KEY") == KEY_ONE
