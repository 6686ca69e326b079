# MIT License
# Copyright (c) 2025 Hashborn

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from typing import Any, Tuple
from ..abi import encode_args
from ..crypto.hash import keccak256
from ..crypto.addresses import normalize_address
from .common import ValidationError

USER_OP_ABI_TYPE = "(address,uint256,bytes,bytes,uint256,uint256,uint256,uint256,uint256,bytes,bytes)"

class UserOperation(BaseModel):
    """
    Operation descriptor built and owned by the coordinator.

    The account treats it as opaque apart from `signature`. Bytes fields
    are hex strings ("0x...") in JSON.
    """
    model_config = ConfigDict(frozen=True)

    sender: str
    nonce: int = Field(default=0, ge=0)
    init_code: bytes = b""
    call_data: bytes = b""
    call_gas_limit: int = Field(default=200_000, ge=0)
    verification_gas_limit: int = Field(default=150_000, ge=0)
    pre_verification_gas: int = Field(default=50_000, ge=0)
    max_fee_per_gas: int = Field(default=1_000_000_000, ge=0)
    max_priority_fee_per_gas: int = Field(default=1_000_000_000, ge=0)
    paymaster_and_data: bytes = b""
    signature: bytes = b""

    @field_validator("sender", mode="before")
    @classmethod
    def _check_sender(cls, v: Any) -> str:
        try:
            return normalize_address(v)
        except ValidationError as e:
            raise ValueError(str(e))

    @field_validator("init_code", "call_data", "paymaster_and_data", "signature", mode="before")
    @classmethod
    def _parse_hex(cls, v: Any) -> Any:
        if isinstance(v, str):
            raw = v[2:] if v.startswith(("0x", "0X")) else v
            try:
                return bytes.fromhex(raw)
            except ValueError:
                raise ValueError(f"Invalid hex string: {v[:20]}")
        return v

    @field_serializer("init_code", "call_data", "paymaster_and_data", "signature", when_used="json")
    def _to_hex(self, v: bytes) -> str:
        return "0x" + v.hex()

    def as_abi_tuple(self) -> Tuple[Any, ...]:
        return (
            self.sender,
            self.nonce,
            self.init_code,
            self.call_data,
            self.call_gas_limit,
            self.verification_gas_limit,
            self.pre_verification_gas,
            self.max_fee_per_gas,
            self.max_priority_fee_per_gas,
            self.paymaster_and_data,
            self.signature,
        )

    @classmethod
    def from_abi_tuple(cls, values: Tuple[Any, ...]) -> "UserOperation":
        return cls(
            sender=values[0],
            nonce=values[1],
            init_code=values[2],
            call_data=values[3],
            call_gas_limit=values[4],
            verification_gas_limit=values[5],
            pre_verification_gas=values[6],
            max_fee_per_gas=values[7],
            max_priority_fee_per_gas=values[8],
            paymaster_and_data=values[9],
            signature=values[10],
        )

    def pack(self) -> bytes:
        """ABI-encodes all fields except the signature; dynamic fields are hashed."""
        return encode_args(
            ["address", "uint256", "bytes32", "bytes32", "uint256", "uint256",
             "uint256", "uint256", "uint256", "bytes32"],
            [
                self.sender,
                self.nonce,
                keccak256(self.init_code),
                keccak256(self.call_data),
                self.call_gas_limit,
                self.verification_gas_limit,
                self.pre_verification_gas,
                self.max_fee_per_gas,
                self.max_priority_fee_per_gas,
                keccak256(self.paymaster_and_data),
            ],
        )

    def hash(self, entry_point: str, chain_id: int) -> bytes:
        """Canonical operation hash, bound to the coordinator address and chain id."""
        inner = keccak256(self.pack())
        return keccak256(encode_args(
            ["bytes32", "address", "uint256"],
            [inner, normalize_address(entry_point), chain_id],
        ))

    def required_prefund(self) -> int:
        total_gas = self.call_gas_limit + self.verification_gas_limit + self.pre_verification_gas
        return total_gas * self.max_fee_per_gas

    def gas_price(self, base_fee: int = 0) -> int:
        if self.max_fee_per_gas == self.max_priority_fee_per_gas:
            return self.max_fee_per_gas
        return min(self.max_fee_per_gas, self.max_priority_fee_per_gas + base_fee)

    def with_signature(self, signature: bytes) -> "UserOperation":
        return self.model_copy(update={"signature": signature})
