import sqlite3
import threading
from typing import Optional, Dict

class StorageDB:
    def __init__(self, db_path: str = ":memory:"):
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.cursor = self.conn.cursor()
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        with self._lock:
            # State table: Key-Value store for account state
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            ''')
            # Receipts: one row per top-level transaction
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS receipts (
                    tx_hash TEXT PRIMARY KEY,
                    seq INTEGER,
                    data TEXT
                )
            ''')
            self.conn.commit()

    # --- State Methods ---
    def get_state(self, key: str) -> Optional[str]:
        with self._lock:
            self.cursor.execute('SELECT value FROM state WHERE key = ?', (key,))
            row = self.cursor.fetchone()
            return row[0] if row else None

    def set_state_batch(self, items: Dict[str, str]):
        with self._lock:
            self.cursor.executemany('INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)', list(items.items()))
            self.conn.commit()

    def get_state_by_prefix(self, prefix: str) -> Dict[str, str]:
        with self._lock:
            self.cursor.execute('SELECT key, value FROM state WHERE key LIKE ?', (f"{prefix}%",))
            return {row[0]: row[1] for row in self.cursor.fetchall()}

    # --- Receipt Methods ---
    def save_receipt(self, tx_hash: str, seq: int, data: str):
        with self._lock:
            self.cursor.execute('INSERT OR REPLACE INTO receipts (tx_hash, seq, data) VALUES (?, ?, ?)', (tx_hash, seq, data))
            self.conn.commit()

    def get_receipt(self, tx_hash: str) -> Optional[str]:
        with self._lock:
            self.cursor.execute('SELECT data FROM receipts WHERE tx_hash = ?', (tx_hash,))
            row = self.cursor.fetchone()
            return row[0] if row else None

    def close(self):
        with self._lock:
            self.conn.close()
