"""
Enumeration types for LedgerBridge.

Status values are persisted verbatim in the local store and read by other
tools, so the string values are part of the external contract. All enums
inherit from str to ensure JSON serialization compatibility.
"""

from enum import Enum


class AIStatus(str, Enum):
    """Categorization state of a transaction list row (NULL means never touched)."""

    CATEGORIZING = "categorizing"
    CATEGORIZED = "categorized"


class SyncStatus(str, Enum):
    """Push-back outcome of a transaction list row (NULL means never attempted)."""

    SKIPPED = "skipped"
    FAILED = "failed"
    SYNCED = "synced"


class JobStatus(str, Enum):
    """Lifecycle of an in-memory background job."""

    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


class JobKind(str, Enum):
    """Background job kinds, each with its own single slot."""

    CATEGORIZE = "categorize"
    SYNC = "sync"
