"""Error taxonomy and recoverable-warning records."""
from enum import Enum

from pydantic import BaseModel


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""


class StoreUnavailable(ReconciliationError):
    """The document store could not be read (connection or permission)."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        super().__init__(f"store unavailable at {path!r}" + (f": {reason}" if reason else ""))


class AllSourcesFailed(StoreUnavailable):
    """Every ticket source failed on every partition it attempted."""


class MalformedRecord(ReconciliationError):
    """A raw record lacks a field required to build a canonical ticket."""

    def __init__(self, path: str, missing: list[str]):
        self.path = path
        self.missing = missing
        super().__init__(f"record {path!r} missing {', '.join(missing)}")


class InvalidWindow(ReconciliationError):
    """The requested time window cannot be parsed or is inverted."""


class WarningKind(str, Enum):
    STORE_UNAVAILABLE = "store_unavailable"
    MALFORMED_RECORD = "malformed_record"
    UNPARSEABLE_PARTITION = "unparseable_partition"
    DISCOUNT_MISMATCH = "discount_mismatch"


class ReconciliationWarning(BaseModel):
    """A recovered error reported alongside the metrics."""
    kind: WarningKind
    path: str
    message: str
