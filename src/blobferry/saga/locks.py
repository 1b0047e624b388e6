"""
Per-payer locks.

Concurrent uploads from the same payer must not interleave their source
ledger debits, so fee collection and bridge initiation hold the payer's
lock. Uploads from different payers never wait on each other.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class PayerLocks:
    """Lazily created ``asyncio.Lock`` per payer address."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    def _lock_for(self, payer: str) -> asyncio.Lock:
        lock = self._locks.get(payer)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[payer] = lock
        return lock

    @asynccontextmanager
    async def hold(self, payer: str) -> AsyncIterator[None]:
        lock = self._lock_for(payer)
        self._holders[payer] = self._holders.get(payer, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[payer] -= 1
            if self._holders[payer] == 0:
                del self._holders[payer]
                del self._locks[payer]

    def locked(self, payer: str) -> bool:
        lock = self._locks.get(payer)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
