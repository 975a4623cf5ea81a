"""Unit tests for BDHKE and NUT-13 derivation."""

import secrets

from coincurve import PrivateKey

from cashu_coco.crypto import (
    blind_message,
    compute_y,
    derive_blinding_factor,
    derive_secret,
    hash_to_curve,
    keyset_id_to_int,
    unblind_signature,
)
from cashu_coco.seed import resolve_seed

NUT13_MNEMONIC = (
    "half depart obvious quality work element tank gorilla view sugar picture humble"
)


class TestHashToCurve:
    def test_nut00_vectors(self):
        assert (
            hash_to_curve(bytes(32)).format().hex()
            == "024cce997d3b518f739663b757deaec95bcd9473c30a14ac2fd04023a739d1a725"
        )
        assert (
            hash_to_curve(bytes(31) + b"\x01").format().hex()
            == "022e7158e11c9506f1aa4248bf531298daa7febd6194f003edcd9b93ade6253acf"
        )

    def test_compute_y_uses_utf8_secret(self):
        assert compute_y("test") == hash_to_curve(b"test").format().hex()


class TestBlindSignatures:
    def test_unblinded_signature_equals_k_times_y(self):
        """C = C_ - r*K must equal k*Y for the mint key k."""
        k = PrivateKey(secrets.token_bytes(32))
        secret = secrets.token_hex(32)

        B_, r = blind_message(secret)
        C_ = B_.multiply(k.secret)
        C = unblind_signature(C_, r, k.public_key)

        expected = hash_to_curve(secret.encode()).multiply(k.secret)
        assert C.format() == expected.format()

    def test_fixed_blinding_factor_is_deterministic(self):
        r = bytes(31) + b"\x01"
        first, _ = blind_message("secret", r)
        second, _ = blind_message("secret", r)
        assert first.format() == second.format()


class TestDeterministicSecrets:
    """NUT-13 derivation on m/129372'/0'/{keyset}'/{counter}'/{0|1}."""

    def test_keyset_id_to_int(self):
        assert keyset_id_to_int("009a1f293253e41e") == 864559728

    def test_nut13_vectors(self):
        seed = resolve_seed(NUT13_MNEMONIC)
        assert (
            derive_secret(seed, "009a1f293253e41e", 0)
            == "485875df74771877439ac06339e284c3acfcd9be7abf3bc20b516faeadfe77ae"
        )
        assert (
            derive_blinding_factor(seed, "009a1f293253e41e", 0).hex()
            == "ad00d431add9c673e843d4c2bf9a778a5f402b985b8da2d5550bf39cda41d679"
        )

    def test_counters_and_keysets_diverge(self):
        seed = bytes(64)
        assert derive_secret(seed, "009a1f293253e41e", 0) != derive_secret(
            seed, "009a1f293253e41e", 1
        )
        assert derive_secret(seed, "009a1f293253e41e", 0) != derive_secret(
            seed, "00ad268c4d1f5826", 0
        )
