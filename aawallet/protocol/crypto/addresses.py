# MIT License
# Copyright (c) 2025 Hashborn

from typing import Optional, Union
from .hash import keccak256
from ..types.common import ValidationError

ZERO_ADDRESS = "0x" + "00" * 20

def address_from_pubkey(pub_bytes: bytes) -> str:
    """Derives 20-byte account address from a 64-byte uncompressed public key."""
    if len(pub_bytes) == 65 and pub_bytes[0] == 4:
        pub_bytes = pub_bytes[1:]
    if len(pub_bytes) != 64:
        raise ValidationError(f"Expected 64-byte public key, got {len(pub_bytes)} bytes")
    return "0x" + keccak256(pub_bytes)[-20:].hex()

def normalize_address(addr: Union[str, bytes]) -> str:
    """Returns canonical lowercase 0x-hex form. Raises ValidationError on bad input."""
    if isinstance(addr, (bytes, bytearray)):
        if len(addr) != 20:
            raise ValidationError(f"Invalid address length: {len(addr)}")
        return "0x" + bytes(addr).hex()

    if not isinstance(addr, str) or not addr.startswith(("0x", "0X")) or len(addr) != 42:
        raise ValidationError(f"Invalid address: {addr!r}")
    try:
        bytes.fromhex(addr[2:])
    except ValueError:
        raise ValidationError(f"Invalid address: {addr!r}")
    return "0x" + addr[2:].lower()

def to_checksum_address(addr: str) -> str:
    """EIP-55 mixed-case checksum encoding."""
    lower = normalize_address(addr)[2:]
    digest = keccak256(lower.encode("ascii")).hex()
    return "0x" + "".join(
        c.upper() if c.isalpha() and int(digest[i], 16) >= 8 else c
        for i, c in enumerate(lower)
    )

def is_valid_address(addr: str, checksummed: Optional[bool] = None) -> bool:
    try:
        normalize_address(addr)
    except ValidationError:
        return False
    if checksummed:
        return to_checksum_address(addr) == addr
    return True

def is_zero_address(addr: str) -> bool:
    return normalize_address(addr) == ZERO_ADDRESS
