"""
In-memory transaction store.

Append-only ledger of matched transactions keyed by watched address.
Lives for the lifetime of the process; nothing is persisted.
"""

import threading
from collections import defaultdict
from typing import Dict, List, Optional

from chainwatch.chain.models import Transaction


class TransactionStore:
    """
    Concurrency-safe append-only ledger.

    Appends keep discovery order. The same transaction may be appended
    more than once; no deduplication is done. Readers receive copies, so
    they never observe a half-finished append.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._transactions: Dict[str, List[Transaction]] = defaultdict(list)

    def append(self, address: str, tx: Transaction) -> None:
        """Add ``tx`` to the end of the sequence for ``address``."""
        with self._lock:
            self._transactions[address].append(tx)

    def list(self, address: str) -> List[Transaction]:
        """
        Transactions recorded for ``address`` in append order.

        Unknown addresses yield an empty list.
        """
        with self._lock:
            return list(self._transactions.get(address, ()))

    def addresses(self) -> List[str]:
        """Addresses with at least one stored transaction."""
        with self._lock:
            return [a for a, txs in self._transactions.items() if txs]

    def count(self, address: Optional[str] = None) -> int:
        """Number of stored transactions, for one address or overall."""
        with self._lock:
            if address is not None:
                return len(self._transactions.get(address, ()))
            return sum(len(txs) for txs in self._transactions.values())
