# MIT License
# Copyright (c) 2025 Hashborn

import hashlib
from Crypto.Hash import keccak

def keccak256(data: bytes) -> bytes:
    """Returns Keccak-256 hash of bytes (pre-standard SHA3, as used by the EVM)."""
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()

def keccak256_hex(data: bytes) -> str:
    """Returns Keccak-256 hash of bytes as 0x-prefixed hex string."""
    return "0x" + keccak256(data).hex()

def sha256(data: bytes) -> bytes:
    """Returns SHA256 hash of bytes."""
    return hashlib.sha256(data).digest()
