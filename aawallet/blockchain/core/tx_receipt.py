"""
Transaction receipt tracking.

Every top-level transaction, committed or reverted, leaves a receipt.
"""
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, List, Any
import json
import time
import logging
from threading import RLock
from ..storage.db import StorageDB

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_REVERTED = "reverted"


@dataclass
class TxReceipt:
    """
    Attributes:
        tx_hash: Transaction hash (0x-hex)
        status: 'success' or 'reverted'
        sender: Externally-owned sender
        to: Called address
        gas_used: Gas consumed including the base cost
        return_data: Raw return data (success) or revert payload (failure), 0x-hex
        error: Error message if the transaction reverted
        revert_reason: Decoded Error(string) reason, when there is one
        logs: Logs emitted by committed frames
    """
    tx_hash: str
    status: str
    sender: str
    to: str
    gas_used: int = 0
    return_data: str = "0x"
    error: Optional[str] = None
    revert_reason: Optional[str] = None
    logs: List[Dict[str, Any]] = field(default_factory=list)
    timestamp: int = 0

    def __post_init__(self):
        if self.timestamp == 0:
            self.timestamp = int(time.time())

    @property
    def success(self) -> bool:
        return self.status == STATUS_SUCCESS

    @property
    def output(self) -> bytes:
        return bytes.fromhex(self.return_data[2:])

    def events(self, name: str) -> List[Dict[str, Any]]:
        """Args of every log named `name`, in emission order."""
        return [log["args"] for log in self.logs if log["event"] == name]

    def to_dict(self) -> dict:
        return asdict(self)


class TxReceiptStore:
    """
    Receipts by hash, kept in memory (bounded) and optionally written to the
    node DB.
    """

    def __init__(self, db: Optional[StorageDB] = None, max_receipts: int = 10000):
        self.receipts: Dict[str, TxReceipt] = {}
        self.db = db
        self.max_receipts = max_receipts
        self.lock = RLock()
        self._seq = 0

    def add(self, receipt: TxReceipt) -> TxReceipt:
        with self.lock:
            self._seq += 1
            self.receipts[receipt.tx_hash] = receipt
            if self.db is not None:
                self.db.save_receipt(receipt.tx_hash, self._seq, json.dumps(receipt.to_dict()))

            if len(self.receipts) > self.max_receipts:
                self._cleanup_old_receipts()

            logger.debug(f"Stored {receipt.status} receipt: {receipt.tx_hash[:18]}...")
            return receipt

    def get(self, tx_hash: str) -> Optional[TxReceipt]:
        with self.lock:
            receipt = self.receipts.get(tx_hash)
            if receipt is None and self.db is not None:
                raw = self.db.get_receipt(tx_hash)
                if raw:
                    receipt = TxReceipt(**json.loads(raw))
            return receipt

    def _cleanup_old_receipts(self):
        """Drops the oldest 10% from memory (the DB copy is kept)."""
        by_age = sorted(self.receipts.items(), key=lambda item: item[1].timestamp)
        for tx_hash, _ in by_age[:max(1, len(by_age) // 10)]:
            del self.receipts[tx_hash]

    def clear(self):
        with self.lock:
            self.receipts.clear()
