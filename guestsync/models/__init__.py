from .base import Base, as_utc, create_session_factory, utcnow
from .sync import SyncCheckpointRecord, SyncRunRecord, SyncRunStatus

__all__ = [
    "Base",
    "SyncCheckpointRecord",
    "SyncRunRecord",
    "SyncRunStatus",
    "as_utc",
    "create_session_factory",
    "utcnow",
]
