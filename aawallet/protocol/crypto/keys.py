# MIT License
# Copyright (c) 2025 Hashborn

from ecdsa import SigningKey, VerifyingKey, SECP256k1 # type: ignore
import hashlib
import os
from .hash import keccak256
from .addresses import address_from_pubkey
from ..types.common import InvalidSignature

SECP256K1_N = SECP256k1.order
SECP256K1_HALF_N = SECP256K1_N // 2

ETH_SIGNED_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n32"

def generate_private_key() -> bytes:
    """Generates a random 32-byte private key in [1, n-1]."""
    while True:
        priv = os.urandom(32)
        if 0 < int.from_bytes(priv, "big") < SECP256K1_N:
            return priv

def public_key_from_private(priv_bytes: bytes) -> bytes:
    """Returns uncompressed 64-byte (x || y) public key from private key."""
    sk = SigningKey.from_string(priv_bytes, curve=SECP256k1)
    return sk.get_verifying_key().to_string()

def address_from_private(priv_bytes: bytes) -> str:
    return address_from_pubkey(public_key_from_private(priv_bytes))

def to_eth_signed_message_hash(digest: bytes) -> bytes:
    """Domain-separates a 32-byte hash so it cannot be replayed as a raw digest signature."""
    if len(digest) != 32:
        raise ValueError(f"Expected 32-byte hash, got {len(digest)} bytes")
    return keccak256(ETH_SIGNED_MESSAGE_PREFIX + digest)

def sign_digest(digest: bytes, priv_bytes: bytes) -> bytes:
    """Signs a 32-byte digest. Returns 65-byte r || s || v with low s and v in {27, 28}."""
    if len(digest) != 32:
        raise ValueError(f"Expected 32-byte digest, got {len(digest)} bytes")
    sk = SigningKey.from_string(priv_bytes, curve=SECP256k1)
    r, s = sk.sign_digest_deterministic(digest, hashfunc=hashlib.sha256, sigencode=lambda r, s, order: (r, s))
    if s > SECP256K1_HALF_N:
        s = SECP256K1_N - s
    sig64 = r.to_bytes(32, "big") + s.to_bytes(32, "big")

    own_pub = sk.get_verifying_key().to_string()
    candidates = VerifyingKey.from_public_key_recovery_with_digest(sig64, digest, SECP256k1, hashfunc=hashlib.sha256)
    for rec_id, vk in enumerate(candidates):
        if vk.to_string() == own_pub:
            return sig64 + bytes([27 + rec_id])
    raise ValueError("Could not determine recovery id")

def sign_message_hash(message_hash: bytes, priv_bytes: bytes) -> bytes:
    """Signs the eth-signed-message form of a 32-byte hash (what wallets sign for a UserOperation)."""
    return sign_digest(to_eth_signed_message_hash(message_hash), priv_bytes)

def recover_public_key(digest: bytes, signature: bytes) -> bytes:
    """
    Recovers the 64-byte public key that produced `signature` over `digest`.

    Raises InvalidSignature for anything that is not a canonical 65-byte
    signature: wrong length, r/s out of range, high s, or v not 27/28.
    """
    if len(signature) != 65:
        raise InvalidSignature("ECDSA: invalid signature length")

    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:64], "big")
    v = signature[64]

    if s > SECP256K1_HALF_N:
        raise InvalidSignature("ECDSA: invalid signature 's' value")
    if v not in (27, 28):
        raise InvalidSignature("ECDSA: invalid signature 'v' value")
    if not (0 < r < SECP256K1_N) or s == 0:
        raise InvalidSignature("ECDSA: invalid signature")

    try:
        candidates = VerifyingKey.from_public_key_recovery_with_digest(
            signature[:64], digest, SECP256k1, hashfunc=hashlib.sha256
        )
        return candidates[v - 27].to_string()
    except Exception as e:
        raise InvalidSignature("ECDSA: invalid signature") from e

def recover_signer(digest: bytes, signature: bytes) -> str:
    """Recovers the signer address. Pure function."""
    return address_from_pubkey(recover_public_key(digest, signature))
