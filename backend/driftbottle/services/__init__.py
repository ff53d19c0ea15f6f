from driftbottle.services.counters import CounterSynchronizer
from driftbottle.services.history_store import HistoryStore, MemoryBlobStore, SqlBlobStore
from driftbottle.services.tracker import OptimisticTransactionTracker

__all__ = [
    "CounterSynchronizer",
    "HistoryStore",
    "MemoryBlobStore",
    "SqlBlobStore",
    "OptimisticTransactionTracker",
]
