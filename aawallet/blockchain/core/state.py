import json
import logging
from typing import Any, Dict, List, Optional, Tuple
from pydantic import BaseModel, Field
from .accounts import Account
from ...protocol.crypto.hash import sha256
from ...protocol.crypto.addresses import normalize_address
from ...protocol.types.common import InsufficientBalance
from ..storage.db import StorageDB

logger = logging.getLogger(__name__)

class LogEntry(BaseModel):
    address: str
    event: str
    args: Dict[str, Any] = Field(default_factory=dict)

class WorldState:
    """
    Account balances, nonces, code and contract storage.

    Mutations go to an in-memory cache; `persist()` writes the cache to the
    DB and empties it. `snapshot()` / `revert_to_snapshot()` give nested
    all-or-nothing semantics: a revert restores every account touched since
    the snapshot and drops the logs recorded after it.

    Each snapshot journals the prior value of an account the first time it
    is mutated, so taking a snapshot costs nothing and a revert only
    restores what changed.
    """

    def __init__(self, db: StorageDB, accounts: Dict[str, Account] = None):
        self.db = db
        # Cache for modified/accessed accounts: address -> Account
        self._accounts: Dict[str, Account] = accounts if accounts is not None else {}
        self.logs: List[LogEntry] = []
        # (address -> prior account or None if it was not cached, log count)
        self._snapshots: List[Tuple[Dict[str, Optional[Account]], int]] = []

    def _record(self, address: str):
        if not self._snapshots:
            return
        journal = self._snapshots[-1][0]
        if address not in journal:
            prior = self._accounts.get(address)
            journal[address] = prior.model_copy(deep=True) if prior is not None else None

    def _mutable_account(self, address: str) -> Account:
        acc = self.get_account(address)
        self._record(acc.address)
        return acc

    # --- Accounts ---
    def get_account(self, address: str) -> Account:
        address = normalize_address(address)
        if address in self._accounts:
            return self._accounts[address]

        # Try load from DB
        raw_json = self.db.get_state(f"acc:{address}")
        if raw_json:
            acc = Account.model_validate_json(raw_json)
            self._accounts[address] = acc
            return acc

        # Return generic new account
        return Account(address=address)

    def set_account(self, account: Account):
        """Updates account in local cache."""
        self._record(account.address)
        self._accounts[account.address] = account

    def account_exists(self, address: str) -> bool:
        address = normalize_address(address)
        return address in self._accounts or self.db.get_state(f"acc:{address}") is not None

    def get_balance(self, address: str) -> int:
        return self.get_account(address).balance

    def add_balance(self, address: str, amount: int):
        acc = self._mutable_account(address)
        acc.balance += amount
        self.set_account(acc)

    def transfer(self, src: str, dst: str, amount: int):
        if amount < 0:
            raise ValueError("Negative transfer amount")
        if amount == 0:
            return
        sender = self.get_account(src)
        if sender.balance < amount:
            raise InsufficientBalance(sender.address, sender.balance, amount)
        self._record(sender.address)
        sender.balance -= amount
        self.set_account(sender)
        self.add_balance(dst, amount)

    def increment_nonce(self, address: str) -> int:
        acc = self._mutable_account(address)
        acc.nonce += 1
        self.set_account(acc)
        return acc.nonce

    def set_code(self, address: str, code: Optional[str]):
        acc = self._mutable_account(address)
        acc.code = code
        self.set_account(acc)

    # --- Contract storage ---
    def get_storage(self, address: str, key: str, default: Any = None) -> Any:
        return self.get_account(address).storage.get(key, default)

    def set_storage(self, address: str, key: str, value: Any):
        acc = self._mutable_account(address)
        acc.storage[key] = value
        self.set_account(acc)

    # --- Logs ---
    def add_log(self, address: str, event: str, **args: Any):
        args = {k: "0x" + v.hex() if isinstance(v, (bytes, bytearray)) else v for k, v in args.items()}
        self.logs.append(LogEntry(address=address, event=event, args=args))

    # --- Journal ---
    def snapshot(self) -> int:
        self._snapshots.append(({}, len(self.logs)))
        return len(self._snapshots) - 1

    def revert_to_snapshot(self, snapshot_id: int):
        # Newest journal first so the oldest prior value wins
        for journal, _ in reversed(self._snapshots[snapshot_id:]):
            for address, prior in journal.items():
                if prior is None:
                    self._accounts.pop(address, None)
                else:
                    self._accounts[address] = prior
        del self.logs[self._snapshots[snapshot_id][1]:]
        del self._snapshots[snapshot_id:]

    def commit_snapshot(self, snapshot_id: int):
        if snapshot_id > 0:
            parent = self._snapshots[snapshot_id - 1][0]
            for journal, _ in self._snapshots[snapshot_id:]:
                for address, prior in journal.items():
                    parent.setdefault(address, prior)
        del self._snapshots[snapshot_id:]

    @property
    def cached_accounts(self) -> int:
        return len(self._accounts)

    @property
    def journal_size(self) -> int:
        """Accounts recorded by the innermost snapshot."""
        return len(self._snapshots[-1][0]) if self._snapshots else 0

    @property
    def snapshot_depth(self) -> int:
        return len(self._snapshots)

    # --- Persistence ---
    def persist(self):
        """Writes cached accounts to DB and drops the cache."""
        if self._snapshots:
            raise RuntimeError("Cannot persist while a call is in progress")
        self.db.set_state_batch({f"acc:{addr}": acc.model_dump_json() for addr, acc in self._accounts.items()})
        logger.debug(f"Persisted {len(self._accounts)} accounts")
        self._accounts.clear()

    def all_accounts(self) -> Dict[str, Account]:
        """Loads all accounts from DB + cache overlay."""
        final_state: Dict[str, Account] = {}
        for k, v in self.db.get_state_by_prefix("acc:").items():
            addr = k.split(":", 1)[1]
            final_state[addr] = Account.model_validate_json(v)
        for addr, acc in self._accounts.items():
            final_state[addr] = acc
        return final_state

    def compute_state_root(self) -> str:
        """Computes Merkle root of the entire account state."""
        final_state = self.all_accounts()

        items = []
        for addr in sorted(final_state.keys()):
            acc = final_state[addr]
            # Leaf data: address + balance + nonce + code + storage
            leaf_data = (
                addr
                + str(acc.balance)
                + str(acc.nonce)
                + (acc.code or "")
                + json.dumps(acc.storage, sort_keys=True)
            ).encode("utf-8")
            items.append(sha256(leaf_data))

        if not items:
            return sha256(b"").hex()

        return self._compute_merkle_root_from_leaves(items).hex()

    def _compute_merkle_root_from_leaves(self, leaves: List[bytes]) -> bytes:
        if len(leaves) == 1:
            return leaves[0]

        # Ensure even number of leaves
        if len(leaves) % 2 == 1:
            leaves.append(leaves[-1])

        new_level = []
        for i in range(0, len(leaves), 2):
            new_level.append(sha256(leaves[i] + leaves[i+1]))

        return self._compute_merkle_root_from_leaves(new_level)

    @staticmethod
    def empty(db: Optional[StorageDB] = None) -> 'WorldState':
        """Returns an empty state."""
        return WorldState(db if db is not None else StorageDB(":memory:"), {})
