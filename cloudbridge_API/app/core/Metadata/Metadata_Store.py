# Metadata_Store.py
# Description: Persistence for Apple-style metadata bags, keyed by record id.
#
# Imports
import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Mapping, Union
#
# Third-party Libraries
import aiofiles
from loguru import logger
#
# Local Imports
from cloudbridge_API.app.core.Metadata.Metadata_Translator import AppleMetadata
from cloudbridge_API.app.core.Sync.exceptions import MetadataStoreError
from cloudbridge_API.app.core.Utils.Utils import ensure_directory_exists, sanitize_record_id
#
###########################################################################################################################
#
# Functions:

class MetadataStore(ABC):
    """Stores one AppleMetadata bag per record id."""

    @abstractmethod
    async def save(self, record_id: str, metadata: AppleMetadata) -> None:
        pass

    @abstractmethod
    async def get(self, record_id: str) -> AppleMetadata:
        pass

    async def update(self, record_id: str, updates: Mapping[str, Any]) -> AppleMetadata:
        """Shallow-merges `updates` (aliased or field names) into the stored bag and saves it."""
        current = await self.get(record_id)
        merged = current.model_dump(by_alias=True)
        for key, value in updates.items():
            field = AppleMetadata.model_fields.get(key)
            merged[field.alias if field and field.alias else key] = value
        try:
            updated = AppleMetadata.model_validate(merged)
        except ValueError as e:
            raise MetadataStoreError(f"Invalid metadata update for {record_id}: {e}", status=400,
                                     operation="update_metadata", original_error=e) from e
        await self.save(record_id, updated)
        logger.info(f"Metadata updated for file {record_id}")
        return updated


class FileMetadataStore(MetadataStore):
    """
    Writes each bag as pretty-printed JSON to
    `<storage_path>/apple_metadata/<sanitized id>.json`.
    """

    def __init__(self, storage_path: Union[str, Path]):
        self.metadata_path = Path(storage_path) / "apple_metadata"

    def path_for(self, record_id: str) -> Path:
        """
        Resolves the file for `record_id`.

        Raises:
            MetadataStoreError: If the id is unusable or would resolve outside the store.
        """
        try:
            safe_id = sanitize_record_id(record_id)
        except ValueError as e:
            raise MetadataStoreError(str(e), status=400, operation="metadata_path", original_error=e) from e
        base = self.metadata_path.resolve()
        candidate = (base / f"{safe_id}.json").resolve()
        if candidate.parent != base:
            raise MetadataStoreError(f"Record id {record_id!r} escapes the metadata directory", status=400,
                                     operation="metadata_path")
        return candidate

    async def save(self, record_id: str, metadata: AppleMetadata) -> None:
        file_path = self.path_for(record_id)
        try:
            payload = json.dumps(metadata.model_dump(mode="json", by_alias=True), indent=2)
        except (TypeError, ValueError) as e:
            logger.error(f"Metadata for file {record_id} cannot be serialized: {e}")
            raise MetadataStoreError(f"Metadata for file {record_id} cannot be serialized", status=400,
                                     operation="save_metadata", context={"id": record_id}, original_error=e) from e
        try:
            ensure_directory_exists(self.metadata_path)
            async with aiofiles.open(file_path, "w", encoding="utf-8") as f:
                await f.write(payload)
        except OSError as e:
            logger.error(f"Failed to save metadata for file {record_id}: {e}")
            raise MetadataStoreError("Failed to save Apple-specific metadata", operation="save_metadata",
                                     context={"id": record_id}, original_error=e) from e
        logger.info(f"Metadata saved for file {record_id}")

    async def get(self, record_id: str) -> AppleMetadata:
        file_path = self.path_for(record_id)
        try:
            async with aiofiles.open(file_path, "r", encoding="utf-8") as f:
                data = await f.read()
        except FileNotFoundError as e:
            raise MetadataStoreError(f"No metadata stored for file {record_id}", status=404,
                                     operation="get_metadata", original_error=e) from e
        except OSError as e:
            logger.error(f"Failed to retrieve metadata for file {record_id}: {e}")
            raise MetadataStoreError("Failed to retrieve Apple-specific metadata", operation="get_metadata",
                                     context={"id": record_id}, original_error=e) from e
        try:
            return AppleMetadata.model_validate(json.loads(data))
        except ValueError as e:
            raise MetadataStoreError(f"Stored metadata for file {record_id} is corrupt", operation="get_metadata",
                                     original_error=e) from e

    async def exists(self, record_id: str) -> bool:
        return self.path_for(record_id).is_file()

    async def delete(self, record_id: str) -> bool:
        """Removes the stored bag. Returns False if there was none."""
        file_path = self.path_for(record_id)
        try:
            os.remove(file_path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise MetadataStoreError("Failed to delete Apple-specific metadata", operation="delete_metadata",
                                     context={"id": record_id}, original_error=e) from e
        logger.info(f"Metadata deleted for file {record_id}")
        return True


class InMemoryMetadataStore(MetadataStore):
    """Dict-backed store for tests and ephemeral runs."""

    def __init__(self):
        self._items: Dict[str, AppleMetadata] = {}

    async def save(self, record_id: str, metadata: AppleMetadata) -> None:
        self._items[record_id] = metadata

    async def get(self, record_id: str) -> AppleMetadata:
        try:
            return self._items[record_id]
        except KeyError as e:
            raise MetadataStoreError(f"No metadata stored for file {record_id}", status=404,
                                     operation="get_metadata", original_error=e) from e

#
# End of Metadata_Store.py
###########################################################################################################################
