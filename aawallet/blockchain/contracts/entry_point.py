# MIT License
# Copyright (c) 2025 Hashborn

"""
EntryPoint: the coordinator for user operations.

Holds per-account deposits, hands out sequential nonces, derives the
canonical operation hash and drives validate-then-execute for a batch of
operations. A validation problem with any operation aborts the whole batch
with FailedOp(opIndex, reason); a failing execution does not.
"""

from dataclasses import dataclass
from typing import List, Tuple
import logging
from .base import Contract, external
from ..observability import metrics
from ...protocol.abi import encode_call, decode_args, decode_revert_reason, encode_custom_error
from ...protocol.crypto.addresses import ZERO_ADDRESS, is_zero_address
from ...protocol.types.common import ExecutionError, ValidationStatus
from ...protocol.types.user_op import UserOperation, USER_OP_ABI_TYPE

logger = logging.getLogger(__name__)

VALIDATE_USER_OP = f"validateUserOp({USER_OP_ABI_TYPE},bytes32,uint256)"


class FailedOp(ExecutionError):
    def __init__(self, op_index: int, reason: str):
        super().__init__(
            f"FailedOp({op_index}, {reason})",
            encode_custom_error("FailedOp(uint256,string)", op_index, reason),
        )
        self.op_index = op_index
        self.reason = reason


@dataclass
class UserOpInfo:
    op: UserOperation
    user_op_hash: bytes
    prefund: int
    validation_gas: int


class EntryPoint(Contract):
    # --- Deposits ---
    def _deposit(self, account: str) -> int:
        return self.sload(f"deposit:{account}", 0)

    def _set_deposit(self, account: str, amount: int):
        self.sstore(f"deposit:{account}", amount)

    def _increment_deposit(self, account: str, amount: int) -> int:
        total = self._deposit(account) + amount
        self._set_deposit(account, total)
        return total

    def receive(self):
        self.deposit_to(self.msg.sender)

    @external("balanceOf(address)", returns=["uint256"], view=True)
    def balance_of(self, account: str) -> int:
        return self._deposit(account)

    @external("depositTo(address)", payable=True)
    def deposit_to(self, account: str):
        total = self._increment_deposit(account, self.msg.value)
        self.emit("Deposited", account=account, totalDeposit=total)

    @external("withdrawTo(address,uint256)")
    def withdraw_to(self, withdraw_address: str, amount: int):
        account = self.msg.sender
        deposit = self._deposit(account)
        self.require(amount <= deposit, "Withdraw amount too large")
        self._set_deposit(account, deposit - amount)
        self.emit("Withdrawn", account=account, withdrawAddress=withdraw_address, amount=amount)
        result = self.call(withdraw_address, b"", amount)
        self.require(result.success, "failed to withdraw")

    # --- Nonces (key 0 only) ---
    @external("getNonce(address,uint192)", returns=["uint256"], view=True)
    def get_nonce(self, sender: str, key: int) -> int:
        if key != 0:
            return key << 64
        return self.sload(f"nonce:{sender}", 0)

    def _validate_and_update_nonce(self, sender: str, nonce: int) -> bool:
        current = self.sload(f"nonce:{sender}", 0)
        if nonce != current:
            return False
        self.sstore(f"nonce:{sender}", current + 1)
        return True

    # --- Hashing ---
    @external(f"getUserOpHash({USER_OP_ABI_TYPE})", returns=["bytes32"], view=True)
    def get_user_op_hash(self, op: tuple) -> bytes:
        return UserOperation.from_abi_tuple(op).hash(self.address, self.host.chain_id)

    # --- Batch handling ---
    @external(f"handleOps({USER_OP_ABI_TYPE}[],address)")
    def handle_ops(self, ops: list, beneficiary: str):
        infos = [
            self._validate_prepayment(index, UserOperation.from_abi_tuple(raw))
            for index, raw in enumerate(ops)
        ]

        collected = 0
        outcomes: List[bool] = []
        for index, info in enumerate(infos):
            cost, success = self._execute_user_op(index, info)
            collected += cost
            outcomes.append(success)

        self._compensate(beneficiary, collected)
        for success in outcomes:
            metrics.user_ops_total.labels(outcome="success" if success else "reverted").inc()
        logger.info(f"Handled {len(ops)} user ops, {collected} paid to {beneficiary}")

    def _validate_prepayment(self, index: int, op: UserOperation) -> UserOpInfo:
        if op.init_code:
            raise FailedOp(index, "AA10 init code not supported")
        if op.paymaster_and_data:
            raise FailedOp(index, "AA30 paymaster not supported")
        if not self.host.state.get_account(op.sender).has_code:
            raise FailedOp(index, "AA20 account not deployed")

        user_op_hash = op.hash(self.address, self.host.chain_id)
        required = op.required_prefund()
        missing = max(required - self._deposit(op.sender), 0)

        result = self.call(
            op.sender,
            encode_call(VALIDATE_USER_OP, op.as_abi_tuple(), user_op_hash, missing),
            gas=op.verification_gas_limit,
        )
        if not result.success or len(result.return_data) < 32:
            reason = decode_revert_reason(result.return_data)
            raise FailedOp(index, f"AA23 reverted: {reason}" if reason else "AA23 reverted (or OOG)")
        validation_data = decode_args(["uint256"], result.return_data[:32])[0]

        deposit = self._deposit(op.sender)
        if deposit < required:
            raise FailedOp(index, "AA21 didn't pay prefund")
        self._set_deposit(op.sender, deposit - required)

        if not self._validate_and_update_nonce(op.sender, op.nonce):
            raise FailedOp(index, "AA25 invalid account nonce")
        if validation_data != ValidationStatus.SUCCESS:
            raise FailedOp(index, "AA24 signature error")

        return UserOpInfo(op, user_op_hash, required, result.gas_used)

    def _execute_user_op(self, index: int, info: UserOpInfo) -> Tuple[int, bool]:
        op = info.op
        result = self.call(op.sender, op.call_data, gas=op.call_gas_limit)
        if not result.success:
            self.emit(
                "UserOperationRevertReason",
                userOpHash=info.user_op_hash,
                sender=op.sender,
                nonce=op.nonce,
                revertReason=result.return_data,
            )
            logger.debug(f"User op {index} from {op.sender} reverted: {result.error}")

        actual_gas = info.validation_gas + result.gas_used + op.pre_verification_gas
        actual_cost = actual_gas * op.gas_price(self.host.base_fee)
        if info.prefund < actual_cost:
            raise FailedOp(index, "AA51 prefund below actualGasCost")
        self._increment_deposit(op.sender, info.prefund - actual_cost)

        self.emit(
            "UserOperationEvent",
            userOpHash=info.user_op_hash,
            sender=op.sender,
            paymaster=ZERO_ADDRESS,
            nonce=op.nonce,
            success=result.success,
            actualGasCost=actual_cost,
            actualGasUsed=actual_gas,
        )
        return actual_cost, result.success

    def _compensate(self, beneficiary: str, amount: int):
        if is_zero_address(beneficiary):
            raise FailedOp(0, "AA90 invalid beneficiary")
        result = self.call(beneficiary, b"", amount)
        if not result.success:
            raise FailedOp(0, "AA91 failed send to beneficiary")
