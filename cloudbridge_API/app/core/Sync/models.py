# models.py
# Description: Data model for the sync core: records, batches, outcomes, conflict pairs and live photos.
#
# Imports
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, Union
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from .exceptions import SyncError, ValidationError, ResolutionError
#
########################################################################################################################
#
# Functions:

SUPPORTED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
BODYLESS_METHODS = ("GET", "DELETE")

SyncRecord = Dict[str, Any]


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parses an ISO-8601 string or an epoch-millisecond number into an aware UTC datetime.

    Returns None for anything that cannot be parsed (including None, booleans
    and empty strings) instead of raising.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.debug(f"Epoch value out of range: {value!r}")
            return None
    if not isinstance(value, str) or not value.strip():
        return None

    ts_str = value.strip()
    if ts_str.lstrip("-").isdigit():
        return parse_timestamp(int(ts_str))
    try:
        dt = datetime.fromisoformat(ts_str.replace('Z', '+00:00'))
    except ValueError:
        try:
            # Fallback for space separator
            dt = datetime.strptime(ts_str, '%Y-%m-%d %H:%M:%S')
        except ValueError:
            logger.debug(f"Could not parse timestamp string: {ts_str!r}")
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_iso(dt: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a trailing 'Z'."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_epoch_ms(dt: datetime) -> int:
    return int(round(dt.timestamp() * 1000))


def validate_record(record: Any) -> str:
    """
    Checks the basic shape of a record and returns its id.

    Raises:
        ValidationError: If the record is not a mapping or has no usable `id`.
    """
    if record is None:
        raise ValidationError("Record is null")
    if not isinstance(record, Mapping):
        raise ValidationError(f"Record must be a mapping, got {type(record).__name__}")
    record_id = record.get("id")
    if not isinstance(record_id, str) or not record_id:
        raise ValidationError("Record is missing a non-empty string 'id'")
    return record_id


@dataclass
class Batch:
    """An ordered, bounded slice of records. The unit of retry."""
    index: int
    records: List[SyncRecord]

    @property
    def ids(self) -> List[str]:
        return [record["id"] for record in self.records]

    def __len__(self) -> int:
        return len(self.records)


def chunk_records(records: List[SyncRecord], batch_size: int) -> List[Batch]:
    """Splits records into ordered, non-overlapping batches of at most `batch_size`."""
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    return [
        Batch(index=i // batch_size, records=records[i:i + batch_size])
        for i in range(0, len(records), batch_size)
    ]


@dataclass
class FailedRecord:
    """Per-record failure entry inside a SyncOutcome."""
    id: Optional[str]
    error: str
    status: Optional[int] = None
    error_type: str = "SyncError"

    @classmethod
    def from_error(cls, record_id: Optional[str], error: BaseException) -> "FailedRecord":
        if isinstance(error, SyncError):
            return cls(id=record_id, error=error.message, status=error.status, error_type=type(error).__name__)
        return cls(id=record_id, error=str(error) or "Unknown error while syncing batch",
                   status=500, error_type=type(error).__name__)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "error": self.error, "status": self.status, "error_type": self.error_type}


@dataclass
class SyncOutcome:
    """
    Aggregate result of one submission.

    `applied_ids` and `errors` together account for every submitted record.
    `metadata_errors` lists records whose data write succeeded but whose
    metadata could not be translated or persisted; those records are still
    counted as applied.
    """
    results: List[Any] = field(default_factory=list)
    errors: List[FailedRecord] = field(default_factory=list)
    applied_ids: List[str] = field(default_factory=list)
    metadata_errors: List[FailedRecord] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors and not self.metadata_errors

    @property
    def failed_ids(self) -> List[Optional[str]]:
        return [failure.id for failure in self.errors]

    @property
    def conflicts(self) -> List[FailedRecord]:
        """Failures the remote rejected as conflicting; candidates for conflict resolution."""
        return [failure for failure in self.errors if failure.status == 409]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": self.results,
            "errors": [failure.to_dict() for failure in self.errors],
            "metadata_errors": [failure.to_dict() for failure in self.metadata_errors],
        }


class ResolutionStrategy(str, Enum):
    LAST_WRITE_WINS = "last-write-wins"
    MERGE = "merge"
    MANUAL = "manual"

    @classmethod
    def from_name(cls, name: Union[str, "ResolutionStrategy", None]) -> "ResolutionStrategy":
        """
        Looks up a strategy by name. Accepts the canonical names plus the
        camelCase/snake_case spellings older clients send.

        Raises:
            ResolutionError: With status 400 if the name is unknown.
        """
        if name is None:
            return cls.LAST_WRITE_WINS
        if isinstance(name, cls):
            return name
        key = str(name).strip()
        aliases = {
            "lastWriteWins": cls.LAST_WRITE_WINS,
            "last_write_wins": cls.LAST_WRITE_WINS,
            "lww": cls.LAST_WRITE_WINS,
        }
        if key in aliases:
            return aliases[key]
        for member in cls:
            if member.value == key.lower():
                return member
        raise ResolutionError("Invalid conflict resolution strategy", strategy=key, status=400)


@dataclass
class ConflictPair:
    """A local/remote pair awaiting reconciliation."""
    local: SyncRecord
    remote: SyncRecord
    strategy: ResolutionStrategy = ResolutionStrategy.LAST_WRITE_WINS


@dataclass
class LivePhotoAsset:
    """A still image and its motion clip, treated as one logical photo."""
    image: bytes = field(repr=False)
    video: bytes = field(repr=False)

    def __post_init__(self):
        if not isinstance(self.image, (bytes, bytearray)) or not isinstance(self.video, (bytes, bytearray)):
            raise ValidationError("Live photo image and video must both be byte sequences")
        self.image = bytes(self.image)
        self.video = bytes(self.video)

#
# End of models.py
#######################################################################################################################
