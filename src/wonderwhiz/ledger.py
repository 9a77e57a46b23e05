"""Append-only spark ledger with a derived balance."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from threading import Lock
from typing import Dict, List, Mapping, Optional, Protocol, Tuple

from .models import LedgerTransaction
from .ops import StructuredLogger
from .sparks import require_amount, require_reason
from .sync import SyncHub, SyncKind


class LedgerStore(Protocol):
    """Append-only transaction log."""

    def append(self, transaction: LedgerTransaction) -> LedgerTransaction: ...

    def sum_for(self, child_id: str) -> int: ...

    def list_for(
        self,
        child_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> Tuple[LedgerTransaction, ...]: ...


class InMemoryLedgerStore:
    def __init__(self) -> None:
        self._entries: Dict[str, List[LedgerTransaction]] = defaultdict(list)
        self._lock = Lock()

    def append(self, transaction: LedgerTransaction) -> LedgerTransaction:
        with self._lock:
            self._entries[transaction.child_id].append(transaction)
        return transaction

    def sum_for(self, child_id: str) -> int:
        with self._lock:
            return sum(entry.amount for entry in self._entries.get(child_id, ()))

    def list_for(
        self,
        child_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> Tuple[LedgerTransaction, ...]:
        with self._lock:
            entries = list(self._entries.get(child_id, ()))
        if start is not None:
            entries = [entry for entry in entries if entry.created_at >= start]
        if end is not None:
            entries = [entry for entry in entries if entry.created_at <= end]
        if limit is not None:
            if limit < 0:
                raise ValueError("limit must not be negative")
            entries = entries[-limit:] if limit else []
        return tuple(entries)


class Ledger:
    """Record spark transactions; the balance is always a fold over the log.

    ``cached_balance`` is a convenience counter for hot paths. It is never the
    source of truth and :meth:`reconcile` resets it from the log.
    """

    def __init__(
        self,
        store: LedgerStore | None = None,
        *,
        sync: SyncHub | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        self._store = store if store is not None else InMemoryLedgerStore()
        self._sync = sync
        self._logger = logger or StructuredLogger()
        self._cache: Dict[str, int] = {}
        self._cache_lock = Lock()

    def append_transaction(
        self,
        child_id: str,
        amount: int,
        reason: str,
        *,
        topic_id: str | None = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> LedgerTransaction:
        """Append a signed transaction. The ledger places no floor on the balance."""

        if not child_id:
            raise ValueError("child_id is required.")
        transaction = LedgerTransaction(
            child_id=child_id,
            amount=require_amount(amount),
            reason=require_reason(reason),
            topic_id=topic_id,
            metadata=dict(metadata or {}),
        )
        stored = self._store.append(transaction)
        with self._cache_lock:
            if child_id in self._cache:
                self._cache[child_id] += stored.amount
        self._logger.log(
            "transaction_appended",
            child=child_id,
            amount=stored.amount,
            reason=stored.reason,
            transaction_id=stored.transaction_id,
        )
        if self._sync is not None:
            self._sync.publish(child_id, SyncKind.TRANSACTION, stored, message_id=stored.transaction_id)
        return stored

    def get_balance(self, child_id: str) -> int:
        return self._store.sum_for(child_id)

    def cached_balance(self, child_id: str) -> int:
        with self._cache_lock:
            cached = self._cache.get(child_id)
        if cached is None:
            return self.reconcile(child_id)
        return cached

    def reconcile(self, child_id: str) -> int:
        """Reset the cached counter from the transaction log and return it."""

        truth = self._store.sum_for(child_id)
        with self._cache_lock:
            previous = self._cache.get(child_id)
            self._cache[child_id] = truth
        if previous is not None and previous != truth:
            self._logger.log("balance_drift", child=child_id, cached=previous, actual=truth)
        return truth

    def history(
        self,
        child_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> Tuple[LedgerTransaction, ...]:
        return self._store.list_for(child_id, start=start, end=end, limit=limit)


__all__ = ["InMemoryLedgerStore", "Ledger", "LedgerStore"]
