# dispatcher.py
# Description: Sync Dispatcher: batches records, pushes or pulls them against the remote
#              endpoint with retries, and triggers metadata persistence and live-photo transcoding.
#
# Imports
import asyncio
import dataclasses
import json
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Type, Union
from urllib.parse import quote
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from cloudbridge_API.app.core.config import BridgeConfig, DispatcherSettings
from cloudbridge_API.app.core.Media_Processing.Live_Photo.Live_Photo_Transcoder import LivePhotoTranscoder
from cloudbridge_API.app.core.Metadata.Metadata_Store import FileMetadataStore, MetadataStore
from cloudbridge_API.app.core.Metadata.Metadata_Translator import AppleMetadata, to_apple_metadata
from .conflict import ConflictResolver
from .exceptions import (
    SyncError, ValidationError, TransientNetworkError, RateLimitError, TranscodingError, error_from_status
)
from .models import (
    BODYLESS_METHODS, SUPPORTED_METHODS, Batch, FailedRecord, LivePhotoAsset, ResolutionStrategy,
    SyncOutcome, SyncRecord, chunk_records, validate_record
)
from .transport import HttpxRemoteEndpoint, RemoteEndpoint, RemoteResponse
#
########################################################################################################################
#
# Functions:

class SyncDispatcher:
    """
    Pushes and pulls records against one remote endpoint.

    Large submissions are split into batches that are sent sequentially and
    retried independently: a batch that exhausts its attempts is reported
    record by record in `SyncOutcome.errors` and never aborts its siblings.
    Settings are an immutable snapshot taken at construction.
    """

    def __init__(
        self,
        settings: DispatcherSettings,
        endpoint: RemoteEndpoint,
        metadata_store: Optional[MetadataStore] = None,
        transcoder: Optional[LivePhotoTranscoder] = None,
        resolver: Optional[ConflictResolver] = None,
        translator: Callable[[Any], AppleMetadata] = to_apple_metadata,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if not isinstance(settings, DispatcherSettings): raise TypeError("settings must be a DispatcherSettings object")
        if not isinstance(endpoint, RemoteEndpoint): raise TypeError("endpoint must be a RemoteEndpoint object")
        if settings.batch_size < 1: raise ValueError("batch_size must be >= 1")
        if settings.max_attempts < 1: raise ValueError("max_attempts must be >= 1")

        self.settings = settings
        self.endpoint = endpoint
        self.metadata_store = metadata_store
        self.transcoder = transcoder or LivePhotoTranscoder()
        self.resolver = resolver or ConflictResolver()
        self.translator = translator
        self._sleep = sleep

        logger.info(f"SyncDispatcher initialized for {settings.base_url} "
                    f"(batch size {settings.batch_size}, {settings.max_attempts} attempts)")

    @classmethod
    def from_config(cls, config: BridgeConfig, endpoint: Optional[RemoteEndpoint] = None) -> "SyncDispatcher":
        settings = config.dispatcher.to_settings()
        return cls(
            settings=settings,
            endpoint=endpoint or HttpxRemoteEndpoint(settings.base_url, timeout=settings.request_timeout),
            metadata_store=FileMetadataStore(config.metadata.storage_path),
            transcoder=LivePhotoTranscoder.from_config(config.transcoder),
        )

    def with_access_token(self, access_token: Optional[str]) -> "SyncDispatcher":
        """Returns a dispatcher sharing this one's collaborators but sending a different credential."""
        return SyncDispatcher(
            settings=dataclasses.replace(self.settings, access_token=access_token),
            endpoint=self.endpoint,
            metadata_store=self.metadata_store,
            transcoder=self.transcoder,
            resolver=self.resolver,
            translator=self.translator,
            sleep=self._sleep,
        )

    async def aclose(self) -> None:
        await self.endpoint.aclose()

    async def __aenter__(self) -> "SyncDispatcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # --- Generic push / pull ---

    async def sync(
        self,
        endpoint: str,
        records: Union[SyncRecord, Iterable[SyncRecord], None] = None,
        method: str = "POST"
    ) -> SyncOutcome:
        """
        Sends `records` to `endpoint` with `method`.

        A single mapping is sent as itself in a one-record batch; a collection
        is sent as JSON lists of at most `batch_size` records. With no records
        (GET/DELETE only) one bare request is made and its decoded payload
        becomes the only result.

        Returns:
            SyncOutcome: results of applied batches plus one FailedRecord per
            record that failed validation or belonged to an exhausted batch.

        Raises:
            ValidationError: For an unsupported method or a missing body on a write.
            SyncError: Only for a bare pull, which has no records to report against.
        """
        method = (method or "").upper()
        if method not in SUPPORTED_METHODS:
            raise ValidationError(f"Unsupported sync method: {method!r}", operation="sync")

        outcome = SyncOutcome()

        if records is None:
            if method not in BODYLESS_METHODS:
                raise ValidationError(f"{method} requires at least one record", operation="sync",
                                      context={"endpoint": endpoint})
            response = await self._with_retries(lambda: self._request(method, endpoint), f"{method} {endpoint}")
            outcome.results.append(response.json())
            return outcome

        single = isinstance(records, Mapping)
        submitted = [records] if single else list(records)

        valid: List[SyncRecord] = []
        for position, record in enumerate(submitted):
            try:
                validate_record(record)
            except ValidationError as e:
                record_id = record.get("id") if isinstance(record, Mapping) else None
                outcome.errors.append(FailedRecord.from_error(record_id if isinstance(record_id, str) else None, e))
                logger.warning(f"Skipping record at position {position}: {e.message}")
                continue
            valid.append(record)

        batches = chunk_records(valid, self.settings.batch_size)
        for batch in batches:
            await self._sync_batch(endpoint, batch, method, single, outcome)

        logger.info(f"Sync {method} {endpoint}: {len(outcome.applied_ids)} applied, {len(outcome.errors)} failed "
                    f"across {len(batches)} batch(es)")
        return outcome

    async def _sync_batch(self, endpoint: str, batch: Batch, method: str, single: bool, outcome: SyncOutcome) -> None:
        try:
            body = None
            if method not in BODYLESS_METHODS:
                body = _encode_json(batch.records[0] if single else batch.records)
            response = await self._with_retries(
                lambda: self._request(method, endpoint, body),
                f"batch {batch.index + 1} ({len(batch)} records) to {endpoint}"
            )
            payload = response.json()
        except SyncError as e:
            logger.error(f"Batch {batch.index + 1} to {endpoint} failed permanently: {e.message}")
            outcome.errors.extend(FailedRecord.from_error(record_id, e) for record_id in batch.ids)
            return

        outcome.applied_ids.extend(batch.ids)
        if isinstance(payload, list):
            outcome.results.extend(payload)
        elif payload is None:
            outcome.results.extend({"id": record_id, "status": response.status} for record_id in batch.ids)
        else:
            outcome.results.append(payload)

        for record in batch.records:
            if record.get("metadata") is None:
                continue
            try:
                await self._persist_metadata(record["id"], record["metadata"])
            except SyncError as e:
                logger.error(f"Metadata for record {record['id']} was not persisted: {e}")
                outcome.metadata_errors.append(FailedRecord.from_error(record["id"], e))
            except Exception as e:
                logger.exception(f"Unexpected error persisting metadata for record {record['id']}: {e}")
                outcome.metadata_errors.append(FailedRecord.from_error(record["id"], e))

    async def _persist_metadata(self, record_id: str, metadata: Any) -> None:
        apple_metadata = self.translator(metadata)
        if self.metadata_store is None:
            logger.debug(f"No metadata store configured; metadata for {record_id} translated but not saved")
            return
        await self.metadata_store.save(record_id, apple_metadata)

    # --- Retry machinery ---

    def _backoff(self, attempt: int, error: SyncError) -> float:
        """Delay before the attempt after failed attempt number `attempt` (1-based)."""
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            return error.retry_after
        return min(self.settings.initial_backoff * (2 ** attempt), self.settings.max_backoff)

    async def _with_retries(
        self,
        operation: Callable[[], Awaitable[Any]],
        description: str,
        extra_retryable: Tuple[Type[SyncError], ...] = ()
    ) -> Any:
        """
        Runs `operation` until it succeeds or the attempt budget is spent.

        Only retryable errors (and `extra_retryable` types) are retried; the
        last error is re-raised after the final attempt, with no sleep after it.
        """
        max_attempts = self.settings.max_attempts
        for attempt in range(1, max_attempts + 1):
            try:
                return await operation()
            except SyncError as e:
                error = e
            except Exception as e:
                logger.exception(f"Unexpected error during {description}: {e}")
                raise SyncError(str(e) or "Unknown error while syncing batch", status=500,
                                operation="sync", original_error=e) from e

            if not (error.retryable or isinstance(error, extra_retryable)):
                raise error
            if attempt >= max_attempts:
                raise error
            delay = self._backoff(attempt, error)
            logger.warning(f"Attempt {attempt}/{max_attempts} of {description} failed: {error.message}. "
                           f"Retrying in {delay:.1f}s")
            await self._sleep(delay)

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[bytes] = None,
        content_type: str = "application/json"
    ) -> RemoteResponse:
        headers: Dict[str, str] = {}
        if self.settings.access_token:
            headers["Authorization"] = f"Bearer {self.settings.access_token}"
        if body is not None:
            headers["Content-Type"] = content_type

        try:
            response = await asyncio.wait_for(
                self.endpoint.request(method, path, body=body, headers=headers),
                timeout=self.settings.request_timeout
            )
        except asyncio.TimeoutError as e:
            raise TransientNetworkError("Request timed out", operation="request",
                                        context={"method": method, "endpoint": path}, original_error=e) from e

        if not response.ok:
            raise error_from_status(response.status, f"Failed to sync data: {response.reason}",
                                    retry_after=response.retry_after,
                                    context={"method": method, "endpoint": path})
        return response

    # --- Live photos ---

    async def sync_live_photo(self, still_path: str, video_path: str) -> Any:
        """
        Converts a local still/clip pair to a motion photo and uploads it.

        The transcode and upload are retried together as one operation.

        Returns:
            The decoded upload response.
        """
        async def attempt():
            motion_photo = await self.transcoder.to_remote_encoding(still_path, video_path)
            response = await self._request("POST", self.settings.live_photo_upload_path, motion_photo,
                                           content_type="image/jpeg")
            return response.json()

        result = await self._with_retries(attempt, f"live photo upload of {still_path}",
                                          extra_retryable=(TranscodingError,))
        logger.info("Live Photo converted and synced successfully")
        return result

    async def download_and_convert_live_photo(self, photo_id: str) -> LivePhotoAsset:
        """Downloads motion photo `photo_id` and converts it to the local still/clip pair."""
        if not isinstance(photo_id, str) or not photo_id:
            raise ValidationError("Photo id must be a non-empty string", operation="download_live_photo")
        path = self.settings.live_photo_download_path.format(id=quote(photo_id, safe=""))

        async def attempt():
            response = await self._request("GET", path)
            return await self.transcoder.to_local_encoding_bytes(response.content)

        return await self._with_retries(attempt, f"live photo download of {photo_id}",
                                        extra_retryable=(TranscodingError,))

    # --- Conflicts ---

    def resolve_conflict(
        self,
        local: SyncRecord,
        remote: SyncRecord,
        strategy: Union[str, ResolutionStrategy, None] = None
    ) -> SyncRecord:
        """Forwards to the conflict resolver; anything that is not a SyncError becomes one."""
        try:
            return self.resolver.resolve(local, remote, strategy)
        except SyncError:
            raise
        except Exception as e:
            logger.exception(f"Failed to resolve conflict: {e}")
            raise SyncError("Failed to resolve conflict", status=500, operation="resolve_conflict",
                            original_error=e) from e


def _encode_json(payload: Any) -> bytes:
    try:
        return json.dumps(payload, default=str).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Records could not be serialized: {e}", operation="sync", original_error=e) from e

#
# End of dispatcher.py
########################################################################################################################
