"""
Per-transaction mutual exclusion port.

The reconciler serializes work on one transaction id through this protocol;
infrastructure supplies a Redis lock or an in-process lock registry.
"""
from __future__ import annotations

from typing import AsyncContextManager, Protocol, runtime_checkable


@runtime_checkable
class TransactionLocker(Protocol):
    """``hold`` raises TimeoutError when the lock cannot be acquired in time."""

    def hold(self, transaction_id: str) -> AsyncContextManager[None]: ...
