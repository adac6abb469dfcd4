"""Job and call stores.

- JobStore / CallStore: storage contracts
- InMemoryJobStore / InMemoryCallStore: process-local implementations
"""

from reminder_dispatch.stores.base import CallStore, JobStore
from reminder_dispatch.stores.memory import InMemoryCallStore, InMemoryJobStore

__all__ = [
    "CallStore",
    "JobStore",
    "InMemoryCallStore",
    "InMemoryJobStore",
]
