"""Per-customer serialisation of balance and meter mutations."""

from __future__ import annotations

import asyncio


class CustomerLocks:
    """One ``asyncio.Lock`` per customer, created on first use.

    Shared by every service that mutates a customer's meters, invoices or
    balance. Operations on different customers never wait on each other.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def for_customer(self, customer_id: str) -> asyncio.Lock:
        lock = self._locks.get(customer_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[customer_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)
