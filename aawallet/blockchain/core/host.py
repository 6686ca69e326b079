# MIT License
# Copyright (c) 2025 Hashborn

"""
Execution host for contracts.

Single-threaded and synchronous. A top-level transaction runs a stack of
call frames; every frame executes inside a state snapshot, so a failing
frame rolls back all of its effects (value transfers, storage, logs and
nested calls) while the caller continues. `transact()` rolls back the whole
transaction and re-raises when the outermost frame fails.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Type
import logging
import threading
from .state import WorldState
from .events import EventBus, event_bus, TX_CONFIRMED, TX_FAILED, LOG
from .tx_receipt import TxReceipt, TxReceiptStore, STATUS_SUCCESS, STATUS_REVERTED
from ..contracts.base import Contract, contract_class
from ..observability import metrics
from ...protocol.abi import encode_args, encode_call, decode_args, decode_revert_reason
from ...protocol.crypto.hash import keccak256, keccak256_hex
from ...protocol.crypto.addresses import normalize_address, ZERO_ADDRESS
from ...protocol.config.params import CURRENT_NETWORK, GAS_COSTS, NetworkConfig
from ...protocol.types.common import ExecutionError, OutOfGas, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class Message:
    sender: str
    to: str
    value: int
    data: bytes
    gas: int


@dataclass
class CallResult:
    success: bool
    return_data: bytes = b""
    gas_used: int = 0
    error: Optional[ExecutionError] = None


@dataclass
class Frame:
    msg: Message
    gas_left: int = field(init=False)

    def __post_init__(self):
        self.gas_left = self.msg.gas

    @property
    def gas_used(self) -> int:
        return self.msg.gas - self.gas_left

    def use_gas(self, amount: int):
        if amount > self.gas_left:
            available = self.gas_left
            self.gas_left = 0
            raise OutOfGas(amount, available)
        self.gas_left -= amount


class ExecutionHost:
    def __init__(self, state: WorldState, config: NetworkConfig = CURRENT_NETWORK,
                 receipts: Optional[TxReceiptStore] = None, bus: EventBus = event_bus):
        self.state = state
        self.config = config
        self.chain_id = config.chain_id
        self.base_fee = 0
        self.receipts = receipts if receipts is not None else TxReceiptStore(state.db)
        self.bus = bus
        self.tx_count = 0
        self._frames: List[Frame] = []
        self._contracts: Dict[str, Contract] = {}
        self._lock = threading.RLock()

    # --- Frame context ---
    @property
    def msg(self) -> Message:
        if not self._frames:
            raise RuntimeError("No call in progress")
        return self._frames[-1].msg

    def gas_left(self) -> int:
        return self._frames[-1].gas_left

    def use_gas(self, amount: int):
        if self._frames:
            self._frames[-1].use_gas(amount)

    def get_contract(self, address: str) -> Optional[Contract]:
        acc = self.state.get_account(address)
        if not acc.has_code:
            return None
        inst = self._contracts.get(acc.address)
        if inst is None or type(inst).__name__ != acc.code:
            inst = contract_class(acc.code)(self, acc.address)
            self._contracts[acc.address] = inst
        return inst

    # --- Deployment ---
    def _create_address(self, deployer: str) -> str:
        nonce = self.state.get_account(deployer).nonce
        return "0x" + keccak256(encode_args(["address", "uint256"], [deployer, nonce]))[-20:].hex()

    def deploy(self, deployer: str, contract_cls: Type[Contract], *args: Any,
               address: Optional[str] = None, value: int = 0, gas_limit: Optional[int] = None) -> Contract:
        """Deploys `contract_cls` and runs its constructor. Raises (and leaves no trace) on failure."""
        with self._lock:
            deployer = normalize_address(deployer)
            address = normalize_address(address) if address else self._create_address(deployer)
            if self.state.get_account(address).has_code:
                raise ValidationError(f"Contract already deployed at {address}")

            self.state.increment_nonce(deployer)
            snap = self.state.snapshot()
            frame = Frame(Message(deployer, address, value, b"", gas_limit or self.config.tx_gas_limit))
            inst = contract_cls(self, address)
            self._frames.append(frame)
            try:
                self.state.set_code(address, contract_cls.__name__)
                self.state.transfer(deployer, address, value)
                inst.constructor(*args)
            except Exception:
                self.state.revert_to_snapshot(snap)
                self.state.persist()
                raise
            finally:
                self._frames.pop()

            self.state.commit_snapshot(snap)
            self.state.logs.clear()
            self.state.persist()
            self._contracts[address] = inst
            logger.info(f"Deployed {contract_cls.__name__} at {address}")
            return inst

    # --- Calls ---
    def _run_frame(self, frame: Frame) -> bytes:
        msg = frame.msg
        self._frames.append(frame)
        try:
            self.state.transfer(msg.sender, msg.to, msg.value)
            contract = self.get_contract(msg.to)
            if contract is None:
                return b""
            return contract.dispatch(msg)
        finally:
            self._frames.pop()

    def call(self, to: str, data: bytes = b"", value: int = 0, gas: Optional[int] = None) -> CallResult:
        """
        Sub-call from the running contract.

        Callee failure never raises here: its effects are rolled back and its
        revert payload comes back in the CallResult. `gas=None` forwards all
        remaining gas of the calling frame.
        """
        parent = self._frames[-1]
        parent.use_gas(GAS_COSTS["call"] + (GAS_COSTS["call_value"] if value else 0))
        child_gas = parent.gas_left if gas is None else min(gas, parent.gas_left)
        frame = Frame(Message(parent.msg.to, normalize_address(to), value, data, child_gas))

        snap = self.state.snapshot()
        try:
            ret = self._run_frame(frame)
        except ExecutionError as e:
            self.state.revert_to_snapshot(snap)
            parent.gas_left -= frame.gas_used
            logger.debug(f"Call {frame.msg.sender} -> {frame.msg.to} reverted: {e}")
            return CallResult(False, e.data, frame.gas_used, e)
        except Exception:
            self.state.revert_to_snapshot(snap)
            raise

        self.state.commit_snapshot(snap)
        parent.gas_left -= frame.gas_used
        return CallResult(True, ret, frame.gas_used)

    def transact(self, sender: str, to: str, data: bytes = b"", value: int = 0,
                 gas_limit: Optional[int] = None) -> TxReceipt:
        """
        Top-level transaction from an externally-owned sender.

        Either every effect commits, or none does and the original
        ExecutionError is re-raised. The sender nonce advances either way.
        """
        with self._lock:
            if self._frames:
                raise RuntimeError("transact() cannot be nested inside a call")
            sender = normalize_address(sender)
            to = normalize_address(to)
            gas_limit = gas_limit if gas_limit is not None else self.config.tx_gas_limit
            if gas_limit < GAS_COSTS["tx_base"]:
                raise ValidationError(f"gas_limit {gas_limit} below base cost {GAS_COSTS['tx_base']}")

            nonce = self.state.get_account(sender).nonce
            tx_hash = keccak256_hex(encode_args(
                ["address", "uint256", "address", "uint256", "bytes"],
                [sender, nonce, to, value, data],
            ))
            self.state.increment_nonce(sender)
            self.state.logs.clear()

            frame = Frame(Message(sender, to, value, data, gas_limit - GAS_COSTS["tx_base"]))
            snap = self.state.snapshot()
            try:
                ret = self._run_frame(frame)
            except Exception as e:
                self.state.revert_to_snapshot(snap)
                self.state.persist()
                if isinstance(e, ExecutionError):
                    self._record(TxReceipt(
                        tx_hash=tx_hash,
                        status=STATUS_REVERTED,
                        sender=sender,
                        to=to,
                        gas_used=GAS_COSTS["tx_base"] + frame.gas_used,
                        return_data="0x" + e.data.hex(),
                        error=str(e),
                        revert_reason=decode_revert_reason(e.data),
                    ))
                    logger.info(f"Tx {tx_hash[:18]}... reverted: {e}")
                raise

            self.state.commit_snapshot(snap)
            logs = [log.model_dump() for log in self.state.logs]
            self.state.logs.clear()
            self.state.persist()

            receipt = self._record(TxReceipt(
                tx_hash=tx_hash,
                status=STATUS_SUCCESS,
                sender=sender,
                to=to,
                gas_used=GAS_COSTS["tx_base"] + frame.gas_used,
                return_data="0x" + ret.hex(),
                logs=logs,
            ))
            for log in logs:
                self.bus.emit(LOG, tx_hash=tx_hash, **log)
            logger.debug(f"Tx {tx_hash[:18]}... committed, gas used {receipt.gas_used}")
            return receipt

    def _record(self, receipt: TxReceipt) -> TxReceipt:
        self.tx_count += 1
        self.receipts.add(receipt)
        metrics.transactions_total.labels(status=receipt.status).inc()
        metrics.transaction_gas_used.observe(receipt.gas_used)
        self.bus.emit(TX_CONFIRMED if receipt.success else TX_FAILED, receipt=receipt)
        return receipt

    def transfer(self, sender: str, to: str, value: int) -> TxReceipt:
        """Plain value transfer (empty call data)."""
        return self.transact(sender, to, b"", value)

    def transact_function(self, sender: str, to: str, signature: str, *args: Any,
                          value: int = 0, gas_limit: Optional[int] = None) -> TxReceipt:
        return self.transact(sender, to, encode_call(signature, *args), value, gas_limit)

    def static_call(self, to: str, signature: str, *args: Any, returns: Tuple[str, ...] = (),
                    sender: str = ZERO_ADDRESS) -> Tuple[Any, ...]:
        """Runs a call and discards every effect. Returns the decoded outputs."""
        with self._lock:
            frame = Frame(Message(normalize_address(sender), normalize_address(to), 0,
                                  encode_call(signature, *args), self.config.tx_gas_limit))
            snap = self.state.snapshot()
            try:
                ret = self._run_frame(frame)
            finally:
                self.state.revert_to_snapshot(snap)
            return decode_args(returns, ret) if returns else ()

    def view(self, to: str, signature: str, *args: Any, returns: str) -> Any:
        """Single-value convenience wrapper around static_call."""
        return self.static_call(to, signature, *args, returns=(returns,))[0]
