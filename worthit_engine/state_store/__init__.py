from .cache import ARTIFACT_KINDS, ArtifactCache, CacheEntry
from .core import FileStateStore, PostgresStateStore, StoredValue, open_state_store
from .locks import InvocationLock, LockHandle
from .quota import PaywallContext, QuotaDecision, QuotaGuard, UsageRecord

__all__ = [
    "ARTIFACT_KINDS",
    "ArtifactCache",
    "CacheEntry",
    "FileStateStore",
    "InvocationLock",
    "LockHandle",
    "PaywallContext",
    "PostgresStateStore",
    "QuotaDecision",
    "QuotaGuard",
    "StoredValue",
    "UsageRecord",
    "open_state_store",
]
