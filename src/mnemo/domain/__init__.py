# Domain Package
from .errors import (
    ConflictError,
    CorruptedDocumentError,
    ExternalInconsistencyError,
    InvalidStateError,
    MnemoError,
    NotFoundError,
    PersistenceError,
)
from .models import (
    Card,
    CardState,
    Document,
    FolderCriteria,
    OrphanRecord,
    OrphanStatus,
    Queue,
    QueueOrderStrategy,
    Rating,
    ReviewLog,
    Schedule,
    Settings,
    SyncResult,
    TagCriteria,
)

__all__ = [
    "Card",
    "CardState",
    "ConflictError",
    "CorruptedDocumentError",
    "Document",
    "ExternalInconsistencyError",
    "FolderCriteria",
    "InvalidStateError",
    "MnemoError",
    "NotFoundError",
    "OrphanRecord",
    "OrphanStatus",
    "PersistenceError",
    "Queue",
    "QueueOrderStrategy",
    "Rating",
    "ReviewLog",
    "Schedule",
    "Settings",
    "SyncResult",
    "TagCriteria",
]
