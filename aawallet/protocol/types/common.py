# MIT License
# Copyright (c) 2025 Hashborn

from enum import Enum, IntEnum
from typing import Optional
from ..abi import encode_revert_reason

class ValidationStatus(IntEnum):
    """Result of validateUserOp. Signature mismatch is FAILURE, never an exception."""
    SUCCESS = 0
    FAILURE = 1

class AccessDeniedReason(str, Enum):
    NOT_FROM_COORDINATOR = "account: not from EntryPoint"
    NOT_FROM_COORDINATOR_OR_OWNER = "account: not Owner or EntryPoint"
    NOT_OWNER = "Ownable: caller is not the owner"

class ProtocolError(Exception):
    pass

class ValidationError(ProtocolError):
    pass

class ExecutionError(ProtocolError):
    """
    Abort raised inside the execution host.

    `data` is the revert payload returned to the caller frame when the abort
    crosses a call boundary.
    """

    def __init__(self, message: str = "execution reverted", data: Optional[bytes] = None):
        super().__init__(message)
        self.data = data if data is not None else b""

class ContractRevert(ExecutionError):
    """require()-style revert carrying an Error(string) payload."""

    def __init__(self, reason: str):
        super().__init__(reason, encode_revert_reason(reason))
        self.reason = reason

class AccessDenied(ContractRevert):
    def __init__(self, kind: AccessDeniedReason):
        super().__init__(kind.value)
        self.kind = kind

class InvalidSignature(ContractRevert):
    pass

class DownstreamCallFailed(ExecutionError):
    """The forwarded call failed; `payload` is the destination's revert data, unmodified."""

    def __init__(self, payload: bytes):
        super().__init__(f"downstream call failed: 0x{payload.hex()}", payload)
        self.payload = payload

class InsufficientBalance(ExecutionError):
    def __init__(self, address: str, balance: int, amount: int):
        super().__init__(f"Insufficient balance: {address} has {balance}, needs {amount}")
        self.address = address
        self.balance = balance
        self.amount = amount

class OutOfGas(ExecutionError):
    def __init__(self, needed: int, available: int):
        super().__init__(f"out of gas: need {needed}, have {available}")
