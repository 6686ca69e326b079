# MIT License
# Copyright (c) 2025 Hashborn

"""
Contract framework.

A contract is a Python class whose externally callable methods are declared
with `@external("name(type,...)", returns=[...])`. Call data is dispatched
by 4-byte selector and decoded with the declared ABI types. All persistent
state lives in the host's world state (`sload` / `sstore`), never on the
instance, so snapshots and reverts cover it.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Type, TYPE_CHECKING
from eth_abi.exceptions import DecodingError, EncodingError
from ...protocol.abi import function_selector, parse_signature, decode_args, encode_args
from ...protocol.config.params import GAS_COSTS
from ...protocol.types.common import ExecutionError, ContractRevert

if TYPE_CHECKING:
    from ..core.host import ExecutionHost, Message, CallResult


# Contract class name -> class, used to re-attach code to persisted accounts
CONTRACT_REGISTRY: Dict[str, Type["Contract"]] = {}


@dataclass(frozen=True)
class AbiFunction:
    signature: str
    inputs: Tuple[str, ...]
    outputs: Tuple[str, ...]
    payable: bool
    view: bool

    @property
    def selector(self) -> bytes:
        return function_selector(self.signature)


def external(signature: str, returns: Sequence[str] = (), payable: bool = False, view: bool = False) -> Callable:
    """Marks a method as callable through call data."""
    _, inputs = parse_signature(signature)

    def decorator(fn: Callable) -> Callable:
        fn.__abi__ = AbiFunction(signature, tuple(inputs), tuple(returns), payable, view)
        return fn

    return decorator


def contract_class(name: str) -> Type["Contract"]:
    if name not in CONTRACT_REGISTRY:
        raise KeyError(f"Unknown contract code '{name}'")
    return CONTRACT_REGISTRY[name]


class Contract:
    # Methods by selector, filled per subclass
    _abi_functions: Dict[bytes, Tuple[AbiFunction, str]] = {}

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        CONTRACT_REGISTRY[cls.__name__] = cls
        functions = {}
        for klass in reversed(cls.__mro__):
            for attr_name, attr in vars(klass).items():
                abi = getattr(attr, "__abi__", None)
                if isinstance(abi, AbiFunction):
                    functions[abi.selector] = (abi, attr_name)
        cls._abi_functions = functions

    def __init__(self, host: "ExecutionHost", address: str):
        self.host = host
        self.address = address

    def constructor(self, *args: Any):
        pass

    # Plain value transfers (empty call data) revert unless a subclass defines receive()
    receive: Optional[Callable[[], None]] = None

    @classmethod
    def abi(cls) -> Dict[str, AbiFunction]:
        return {abi.signature: abi for abi, _ in cls._abi_functions.values()}

    # --- Dispatch ---
    def dispatch(self, msg: "Message") -> bytes:
        if not msg.data:
            if self.receive is None:
                raise ExecutionError("no receive function")
            self.receive()
            return b""

        entry = self._abi_functions.get(msg.data[:4])
        if entry is None:
            raise ExecutionError(f"unknown selector 0x{msg.data[:4].hex()}")
        abi, attr_name = entry

        if msg.value and not abi.payable:
            raise ExecutionError(f"{abi.signature} is not payable")

        try:
            args = decode_args(abi.inputs, msg.data[4:])
        except DecodingError as e:
            raise ExecutionError(f"invalid call data for {abi.signature}: {e}")

        result = getattr(self, attr_name)(*args)
        if not abi.outputs:
            return b""
        if len(abi.outputs) == 1:
            result = (result,)
        try:
            return encode_args(abi.outputs, result)
        except EncodingError as e:
            raise ExecutionError(f"cannot encode return of {abi.signature}: {e}")

    # --- Context ---
    @property
    def msg(self) -> "Message":
        return self.host.msg

    @property
    def balance(self) -> int:
        return self.host.state.get_balance(self.address)

    # --- Storage & logs ---
    def sload(self, key: str, default: Any = None) -> Any:
        self.host.use_gas(GAS_COSTS["sload"])
        return self.host.state.get_storage(self.address, key, default)

    def sstore(self, key: str, value: Any):
        self.host.use_gas(GAS_COSTS["sstore"])
        self.host.state.set_storage(self.address, key, value)

    def emit(self, event: str, **args: Any):
        self.host.use_gas(GAS_COSTS["log"])
        self.host.state.add_log(self.address, event, **args)

    # --- Helpers ---
    def require(self, condition: bool, reason: str):
        if not condition:
            raise ContractRevert(reason)

    def call(self, to: str, data: bytes = b"", value: int = 0, gas: Optional[int] = None) -> "CallResult":
        return self.host.call(to, data, value, gas)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.address})"
