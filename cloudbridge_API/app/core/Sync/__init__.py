# Sync/__init__.py
# The dispatcher and orchestrator pull in the metadata and live-photo libraries,
# which import from this package; import those from their modules directly.
from .models import (
    SyncRecord, Batch, FailedRecord, SyncOutcome, ResolutionStrategy, ConflictPair, LivePhotoAsset
)
from .exceptions import (
    SyncError, ValidationError, TransientNetworkError, RateLimitError, ConflictError, AuthError,
    TranscodingError, MetadataStoreError, ResolutionError, ManualResolutionRequired, error_from_status
)
from .transport import RemoteEndpoint, RemoteResponse, HttpxRemoteEndpoint
from .conflict import ConflictResolver, last_write_wins, merge, manual

__all__ = [
    "SyncRecord",
    "Batch",
    "FailedRecord",
    "SyncOutcome",
    "ResolutionStrategy",
    "ConflictPair",
    "LivePhotoAsset",
    "SyncError",
    "ValidationError",
    "TransientNetworkError",
    "RateLimitError",
    "ConflictError",
    "AuthError",
    "TranscodingError",
    "MetadataStoreError",
    "ResolutionError",
    "ManualResolutionRequired",
    "error_from_status",
    "RemoteEndpoint",
    "RemoteResponse",
    "HttpxRemoteEndpoint",
    "ConflictResolver",
    "last_write_wins",
    "merge",
    "manual",
]
