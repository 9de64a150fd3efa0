"""Transaction storage."""

from chainwatch.storage.memory import TransactionStore

__all__ = ["TransactionStore"]
