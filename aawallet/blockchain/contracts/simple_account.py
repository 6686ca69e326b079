# MIT License
# Copyright (c) 2025 Hashborn

"""
Single-owner smart account.

The account is bound at construction to exactly one coordinator (the
EntryPoint). The coordinator validates operations through `validateUserOp`
and then drives `execute`; the owner may also call `execute` directly.
"""

import logging
from .base import Contract, external
from ..observability import metrics
from ...protocol.abi import encode_call
from ...protocol.config.params import GAS_COSTS
from ...protocol.crypto.addresses import is_zero_address, normalize_address
from ...protocol.crypto.keys import to_eth_signed_message_hash, recover_signer
from ...protocol.types.common import (
    AccessDenied, AccessDeniedReason, DownstreamCallFailed, ValidationStatus,
)
from ...protocol.types.user_op import UserOperation, USER_OP_ABI_TYPE

logger = logging.getLogger(__name__)


class SimpleAccount(Contract):
    def constructor(self, entry_point: str, owner: str):
        entry_point, owner = normalize_address(entry_point), normalize_address(owner)
        self.require(not is_zero_address(entry_point), "account: entry point is the zero address")
        self.require(not is_zero_address(owner), "account: owner is the zero address")
        self.sstore("entry_point", entry_point)
        self.sstore("owner", owner)
        self.emit("SimpleAccountInitialized", entryPoint=entry_point, owner=owner)

    def receive(self):
        pass

    # --- Views ---
    @external("owner()", returns=["address"], view=True)
    def owner(self) -> str:
        return self.sload("owner")

    @external("entryPoint()", returns=["address"], view=True)
    def entry_point(self) -> str:
        return self.sload("entry_point")

    # --- Guards ---
    def _require_from_entry_point(self):
        if self.msg.sender != self.entry_point():
            metrics.access_denied_total.labels(guard="entry_point").inc()
            raise AccessDenied(AccessDeniedReason.NOT_FROM_COORDINATOR)

    def _require_from_entry_point_or_owner(self):
        sender = self.msg.sender
        if sender != self.entry_point() and sender != self.owner():
            metrics.access_denied_total.labels(guard="entry_point_or_owner").inc()
            raise AccessDenied(AccessDeniedReason.NOT_FROM_COORDINATOR_OR_OWNER)

    def _require_owner(self):
        if self.msg.sender != self.owner():
            metrics.access_denied_total.labels(guard="owner").inc()
            raise AccessDenied(AccessDeniedReason.NOT_OWNER)

    # --- Execution ---
    @external("execute(address,uint256,bytes)")
    def execute(self, dest: str, value: int, func: bytes):
        self._require_from_entry_point_or_owner()
        self._call(dest, value, func)

    def _call(self, target: str, value: int, data: bytes):
        result = self.call(target, data, value)
        if not result.success:
            raise DownstreamCallFailed(result.return_data)

    # --- Validation ---
    @external(f"validateUserOp({USER_OP_ABI_TYPE},bytes32,uint256)", returns=["uint256"])
    def validate_user_op(self, op: tuple, user_op_hash: bytes, missing_account_funds: int) -> int:
        """
        Checks that `op.signature` is the owner's signature over the
        eth-signed-message form of `user_op_hash`.

        A mismatch is reported as ValidationStatus.FAILURE, not raised. The
        prefund is settled whatever the outcome.
        """
        self._require_from_entry_point()
        status = self._validate_signature(UserOperation.from_abi_tuple(op), user_op_hash)
        self._pay_prefund(missing_account_funds)
        return int(status)

    def _validate_signature(self, op: UserOperation, user_op_hash: bytes) -> ValidationStatus:
        self.host.use_gas(GAS_COSTS["ecrecover"])
        digest = to_eth_signed_message_hash(user_op_hash)
        signer = recover_signer(digest, op.signature)
        status = ValidationStatus.SUCCESS if signer == self.owner() else ValidationStatus.FAILURE
        metrics.signature_validations_total.labels(status=status.name.lower()).inc()
        if status is ValidationStatus.FAILURE:
            logger.debug(f"{self.address}: signature by {signer} does not match owner")
        return status

    def _pay_prefund(self, missing_account_funds: int):
        if missing_account_funds == 0:
            return
        metrics.prefund_settlements_total.inc()
        # Result ignored: the coordinator checks its own deposit
        self.call(self.msg.sender, b"", missing_account_funds, gas=None)

    # --- Ownership ---
    @external("transferOwnership(address)")
    def transfer_ownership(self, new_owner: str):
        self._require_owner()
        self.require(not is_zero_address(new_owner), "Ownable: new owner is the zero address")
        previous = self.owner()
        self.sstore("owner", new_owner)
        self.emit("OwnershipTransferred", previousOwner=previous, newOwner=new_owner)
        logger.info(f"{self.address}: ownership transferred {previous} -> {new_owner}")

    # --- Deposit held by the coordinator ---
    @external("getDeposit()", returns=["uint256"], view=True)
    def get_deposit(self) -> int:
        result = self.call(self.entry_point(), encode_call("balanceOf(address)", self.address))
        if not result.success:
            raise DownstreamCallFailed(result.return_data)
        return int.from_bytes(result.return_data[:32], "big")

    @external("addDeposit()", payable=True)
    def add_deposit(self):
        self._call(self.entry_point(), self.msg.value, encode_call("depositTo(address)", self.address))

    @external("withdrawDepositTo(address,uint256)")
    def withdraw_deposit_to(self, withdraw_address: str, amount: int):
        self._require_owner()
        self._call(self.entry_point(), 0, encode_call("withdrawTo(address,uint256)", withdraw_address, amount))
