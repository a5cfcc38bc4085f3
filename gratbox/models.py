"""Record, operation and outcome types used by the reconciler."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional


class SyncMode(str, Enum):
    ADD_ONLY = "AddOnly"
    SYNC_EXACT = "SyncExact"


class OperationKind(str, Enum):
    ADD = "Add"
    UPDATE = "Update"
    REMOVE = "Remove"
    NOOP = "NoOp"


class Result(str, Enum):
    SUCCESS = "Success"
    ERROR = "Error"
    SKIPPED = "Skipped"
    WOULD_APPLY = "WouldApply"


@dataclass(frozen=True)
class DesiredRecord:
    """One usable CSV row: the key plus the attribute values the caller wants."""
    key: str
    attributes: Dict[str, str] = field(default_factory=dict)
    line: int = 0  # 1-based data row number in the source file


@dataclass
class RemoteRecord:
    """A live remote entity as observed by the paged fetcher."""
    key: str
    remote_id: str
    attributes: Dict[str, str] = field(default_factory=dict)
    created: Optional[str] = None  # ISO 8601, compared as text
    etag: Optional[str] = None


@dataclass(frozen=True)
class Operation:
    kind: OperationKind
    key: str
    before: Dict[str, str] = field(default_factory=dict)
    after: Dict[str, str] = field(default_factory=dict)
    remote_id: Optional[str] = None
    detail: str = ""
    etag: Optional[str] = None


@dataclass
class OutcomeRow:
    key: str
    operation: str
    result: Result
    error_detail: str = ""
    extra: Dict[str, str] = field(default_factory=dict)
