# MIT License
# Copyright (c) 2025 Hashborn

"""
ABI call-data codec.

Function calls are `selector || abi.encode(args)` where the selector is the
first 4 bytes of keccak256 of the canonical signature, e.g.
`execute(address,uint256,bytes)`.
"""

from typing import Any, List, Optional, Sequence, Tuple
from eth_abi import encode, decode
from eth_abi.exceptions import DecodingError
from .crypto.hash import keccak256

ERROR_STRING_SELECTOR = bytes.fromhex("08c379a0")  # Error(string)

def function_selector(signature: str) -> bytes:
    return keccak256(signature.encode("ascii"))[:4]

def split_types(inner: str) -> List[str]:
    """Splits a comma separated type list on top-level commas only."""
    types = []
    depth = 0
    current = ""
    for ch in inner:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            types.append(current)
            current = ""
        else:
            current += ch
    if current:
        types.append(current)
    return types

def parse_signature(signature: str) -> Tuple[str, List[str]]:
    """'transfer(address,uint256)' -> ('transfer', ['address', 'uint256'])"""
    open_idx = signature.index("(")
    if not signature.endswith(")"):
        raise ValueError(f"Malformed signature: {signature}")
    return signature[:open_idx], split_types(signature[open_idx + 1:-1])

def encode_args(types: Sequence[str], args: Sequence[Any]) -> bytes:
    return encode(list(types), list(args))

def decode_args(types: Sequence[str], data: bytes) -> Tuple[Any, ...]:
    values = decode(list(types), data)
    return tuple(_normalize(t, v) for t, v in zip(types, values))

def encode_call(signature: str, *args: Any) -> bytes:
    _, types = parse_signature(signature)
    return function_selector(signature) + encode_args(types, args)

def decode_call_args(signature: str, calldata: bytes) -> Tuple[Any, ...]:
    """Decodes arguments of a call made with `signature` (selector is checked)."""
    if calldata[:4] != function_selector(signature):
        raise ValueError(f"Selector mismatch for {signature}")
    _, types = parse_signature(signature)
    return decode_args(types, calldata[4:])

def encode_revert_reason(reason: str) -> bytes:
    return ERROR_STRING_SELECTOR + encode(["string"], [reason])

def decode_revert_reason(data: bytes) -> Optional[str]:
    """Returns the Error(string) reason, or None when data is not such a payload."""
    if len(data) < 4 or data[:4] != ERROR_STRING_SELECTOR:
        return None
    try:
        return decode(["string"], data[4:])[0]
    except DecodingError:
        return None

def encode_custom_error(signature: str, *args: Any) -> bytes:
    return encode_call(signature, *args)

def _normalize(abi_type: str, value: Any) -> Any:
    # Decoded addresses are compared as lowercase hex everywhere in the host
    if abi_type == "address":
        return value.lower()
    if abi_type.endswith("]"):
        inner = abi_type[:abi_type.rindex("[")]
        return [_normalize(inner, v) for v in value]
    if abi_type.startswith("("):
        return tuple(_normalize(t, v) for t, v in zip(split_types(abi_type[1:-1]), value))
    return value
