"""Cashu cryptographic primitives for BDHKE (Blind Diffie-Hellmann Key Exchange) and NUT-13 deterministic secrets."""

from __future__ import annotations

import hashlib
import hmac
import secrets
import struct

from coincurve import PrivateKey, PublicKey

DOMAIN_SEPARATOR = b"Secp256k1_HashToCurve_Cashu_"

# secp256k1 field prime and group order
SECP256K1_P = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEFFFFFC2F
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

# NUT-13 derivation path: m/129372'/0'/{keyset_id}'/{counter}'/{0|1}
NUT13_PURPOSE = 129372
NUT13_COIN_TYPE = 0
HARDENED_OFFSET = 0x80000000


def hash_to_curve(message: bytes) -> PublicKey:
    """Hash a message to a point on the secp256k1 curve (NUT-00).

    The message is hashed together with the Cashu domain separator, then a
    little-endian counter is appended until the result is a valid x
    coordinate for a compressed point with even y.
    """
    msg_to_hash = hashlib.sha256(DOMAIN_SEPARATOR + message).digest()
    counter = 0
    while counter < 2**16:
        candidate = hashlib.sha256(msg_to_hash + counter.to_bytes(4, "little")).digest()
        try:
            return PublicKey(b"\x02" + candidate)
        except ValueError:
            counter += 1
    raise ValueError("No valid point found")


def compute_y(secret: str) -> str:
    """Y value of a proof secret, as used by the checkstate endpoint."""
    return hash_to_curve(secret.encode("utf-8")).format(compressed=True).hex()


def blind_message(secret: str, r: bytes | None = None) -> tuple[PublicKey, bytes]:
    """Blind a message for the mint.

    Args:
        secret: The secret string to blind (hashed as UTF-8 bytes)
        r: Optional blinding factor (will be generated if not provided)

    Returns:
        Tuple of (blinded_point, blinding_factor)
    """
    Y = hash_to_curve(secret.encode("utf-8"))

    if r is None:
        r = secrets.token_bytes(32)

    r_key = PrivateKey(r)

    # B' = Y + r*G
    B_ = PublicKey.combine_keys([Y, r_key.public_key])

    return B_, r


def unblind_signature(C_: PublicKey, r: bytes, K: PublicKey) -> PublicKey:
    """Unblind a signature from the mint.

    Args:
        C_: Blinded signature from mint
        r: Blinding factor used
        K: Mint's public key for the amount

    Returns:
        Unblinded signature C
    """
    r_key = PrivateKey(r)
    rK = K.multiply(r_key.secret)

    # C = C' - r*K, subtraction done by adding the negated point (x, p - y)
    rK_bytes = rK.format(compressed=False)
    x = rK_bytes[1:33]
    y_int = int.from_bytes(rK_bytes[33:65], "big")
    neg_y = ((SECP256K1_P - y_int) % SECP256K1_P).to_bytes(32, "big")
    neg_rK = PublicKey(b"\x04" + x + neg_y)

    return PublicKey.combine_keys([C_, neg_rK])


def get_mint_pubkey_for_amount(keys: dict[str, str], amount: int) -> PublicKey | None:
    """Look up the mint public key for a denomination."""
    pubkey_hex = keys.get(str(amount))
    if pubkey_hex is None:
        return None
    return PublicKey(bytes.fromhex(pubkey_hex))


# ───────────────────────── NUT-13 deterministic secrets ─────────────────────────


def keyset_id_to_int(keyset_id: str) -> int:
    """Map a hex keyset ID onto a hardened BIP32 index."""
    return int(keyset_id, 16) % (2**31 - 1)


def _master_key(seed: bytes) -> tuple[bytes, bytes]:
    digest = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
    return digest[:32], digest[32:]


def _hardened_child(key: bytes, chain_code: bytes, index: int) -> tuple[bytes, bytes]:
    data = b"\x00" + key + struct.pack(">I", index + HARDENED_OFFSET)
    digest = hmac.new(chain_code, data, hashlib.sha512).digest()

    child_int = (int.from_bytes(digest[:32], "big") + int.from_bytes(key, "big")) % SECP256K1_N
    if child_int == 0:
        raise ValueError("Invalid child key")
    return child_int.to_bytes(32, "big"), digest[32:]


def derive_path(seed: bytes, path: list[int]) -> bytes:
    """Derive a private key along a fully hardened BIP32 path."""
    key, chain_code = _master_key(seed)
    for index in path:
        key, chain_code = _hardened_child(key, chain_code, index)
    return key


def _nut13_path(keyset_id: str, counter: int, leaf: int) -> list[int]:
    return [NUT13_PURPOSE, NUT13_COIN_TYPE, keyset_id_to_int(keyset_id), counter, leaf]


def derive_secret(seed: bytes, keyset_id: str, counter: int) -> str:
    """Deterministic proof secret (hex) for a keyset counter."""
    return derive_path(seed, _nut13_path(keyset_id, counter, 0)).hex()


def derive_blinding_factor(seed: bytes, keyset_id: str, counter: int) -> bytes:
    """Deterministic blinding factor for a keyset counter."""
    return derive_path(seed, _nut13_path(keyset_id, counter, 1))
