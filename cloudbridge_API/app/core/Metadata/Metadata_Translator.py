# Metadata_Translator.py
# Description: Bidirectional mapping between Apple-style and Android-style file attribute bags.
#
# The Apple bag keeps rich types (ISO-8601 timestamps, tag lists, an ACL list,
# a binary icon); the Android bag is flat, with epoch-millisecond timestamps and
# string-serialized lists/maps. Absent fields default to empty/zero on both sides.
#
# Imports
import base64
import binascii
import json
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Union
#
# Third-party Libraries
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic import ValidationError as PydanticValidationError
#
# Local Imports
from cloudbridge_API.app.core.Sync.exceptions import ValidationError
from cloudbridge_API.app.core.Sync.models import parse_timestamp, to_epoch_ms, to_iso
#
###########################################################################################################################
#
# Functions:

ANDROID_ONLY_KEYS = {"dateCreated", "dateModified"}


def _normalize_iso(value: Any, field_name: str) -> str:
    if value is None or value == "":
        return ""
    dt = parse_timestamp(value)
    if dt is None:
        raise ValueError(f"Field '{field_name}' is not a valid timestamp. Got: {value!r}")
    return to_iso(dt)


class AppleMetadata(BaseModel):
    """Apple-style attribute bag (Finder/Spotlight attributes plus custom extras)."""
    model_config = ConfigDict(populate_by_name=True)

    creation_date: str = Field("", alias="creationDate")
    modification_date: str = Field("", alias="modificationDate")
    label: str = ""
    tags: List[str] = Field(default_factory=list)
    uti: str = Field("", description="Uniform Type Identifier")
    quarantine_attribute: str = Field("", alias="quarantineAttribute")
    custom_icon: bytes = Field(b"", alias="customIcon")
    finder_flags: int = Field(0, alias="finderFlags")
    acl: List[str] = Field(default_factory=list, description="Access Control List")
    spotlight_comments: str = Field("", alias="spotlightComments")
    content_creation_date: str = Field("", alias="contentCreationDate")
    custom_metadata: Dict[str, Any] = Field(default_factory=dict, alias="customMetadata")

    @field_validator('creation_date', 'modification_date', 'content_creation_date', mode='before')
    @classmethod
    def ensure_iso_timestamp(cls, v: Any, info) -> str:
        return _normalize_iso(v, info.field_name)

    @field_validator('custom_icon', mode='before')
    @classmethod
    def decode_icon(cls, v: Any) -> bytes:
        if v is None: return b""
        if isinstance(v, (bytes, bytearray)): return bytes(v)
        if isinstance(v, str):
            try: return base64.b64decode(v, validate=True)
            except (binascii.Error, ValueError): raise ValueError("customIcon must be base64-encoded")
        raise ValueError(f"customIcon must be bytes or a base64 string. Got: {type(v).__name__}")

    @field_validator('label', 'uti', 'quarantine_attribute', 'spotlight_comments', mode='before')
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator('tags', 'acl', mode='before')
    @classmethod
    def none_to_list(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator('finder_flags', mode='before')
    @classmethod
    def none_to_zero(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator('custom_metadata', mode='before')
    @classmethod
    def none_to_dict(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_serializer('custom_icon', when_used='json')
    def encode_icon(self, v: bytes) -> str:
        return base64.b64encode(v).decode("ascii")


class AndroidMetadata(BaseModel):
    """Android-style attribute bag: flat, epoch-millisecond timestamps, string-serialized collections."""
    model_config = ConfigDict(populate_by_name=True)

    date_created: Optional[int] = Field(None, alias="dateCreated")
    date_modified: Optional[int] = Field(None, alias="dateModified")
    label: str = ""
    tags: str = Field("", description="Comma-separated tag list")
    custom_metadata: str = Field("", alias="customMetadata", description="JSON-encoded object")
    uti: str = ""
    quarantine_attribute: str = Field("", alias="quarantineAttribute")
    finder_flags: int = Field(0, alias="finderFlags")
    acl: str = Field("", description="JSON-encoded list of principals")
    spotlight_comments: str = Field("", alias="spotlightComments")
    content_creation_date: Optional[int] = Field(None, alias="contentCreationDate")

    @field_validator('date_created', 'date_modified', 'content_creation_date', mode='before')
    @classmethod
    def ensure_epoch_ms(cls, v: Any, info) -> Optional[int]:
        if v is None or v == "": return None
        if isinstance(v, bool): raise ValueError(f"Field '{info.field_name}' must be epoch milliseconds")
        if isinstance(v, (int, float)): return int(v)
        dt = parse_timestamp(v)
        if dt is None: raise ValueError(f"Field '{info.field_name}' is not a valid timestamp. Got: {v!r}")
        return to_epoch_ms(dt)

    @field_validator('label', 'tags', 'custom_metadata', 'uti', 'quarantine_attribute', 'acl',
                     'spotlight_comments', mode='before')
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator('finder_flags', mode='before')
    @classmethod
    def none_to_zero(cls, v: Any) -> Any:
        return 0 if v is None else v


def _iso_from_epoch(value: Optional[int]) -> str:
    if value is None:
        return ""
    dt = parse_timestamp(value)
    if dt is None:
        raise ValueError(f"Epoch value out of range: {value}")
    return to_iso(dt)


def _epoch_from_iso(value: str) -> Optional[int]:
    if not value:
        return None
    return to_epoch_ms(parse_timestamp(value))


def _load_json(value: str, expected: type, field_name: str):
    if not value:
        return expected()
    try:
        loaded = json.loads(value)
    except json.JSONDecodeError as e:
        raise ValueError(f"Field '{field_name}' is not valid JSON: {e}") from e
    if not isinstance(loaded, expected):
        raise ValueError(f"Field '{field_name}' must decode to a {expected.__name__}")
    return loaded


def is_android_metadata(bag: Mapping) -> bool:
    """True if the bag uses the Android field layout."""
    return bool(ANDROID_ONLY_KEYS & set(bag.keys())) or isinstance(bag.get("tags"), str)


def to_android_metadata(apple: Union[AppleMetadata, Mapping]) -> AndroidMetadata:
    """
    Converts an Apple bag to the Android layout.

    The binary custom icon has no Android counterpart and is dropped.

    Raises:
        ValidationError: If the bag cannot be parsed.
    """
    try:
        if not isinstance(apple, AppleMetadata):
            apple = AppleMetadata.model_validate(dict(apple))
        return AndroidMetadata(
            date_created=_epoch_from_iso(apple.creation_date),
            date_modified=_epoch_from_iso(apple.modification_date),
            label=apple.label,
            tags=",".join(apple.tags),
            custom_metadata=json.dumps(apple.custom_metadata),
            uti=apple.uti,
            quarantine_attribute=apple.quarantine_attribute,
            finder_flags=apple.finder_flags,
            acl=json.dumps(apple.acl),
            spotlight_comments=apple.spotlight_comments,
            content_creation_date=_epoch_from_iso(apple.content_creation_date),
        )
    except (PydanticValidationError, ValueError, TypeError, OverflowError) as e:
        raise ValidationError(f"Failed to translate metadata to Android layout: {e}",
                              operation="to_android_metadata", original_error=e) from e


def to_apple_metadata(bag: Union[AppleMetadata, AndroidMetadata, Mapping]) -> AppleMetadata:
    """
    Produces an Apple bag from either layout.

    Android bags are translated field by field (a missing content-creation
    date falls back to the creation date); Apple bags are validated and
    normalised.

    Raises:
        ValidationError: If the bag is not a mapping or cannot be parsed.
    """
    if isinstance(bag, AppleMetadata):
        return bag
    try:
        if isinstance(bag, Mapping) and not is_android_metadata(bag):
            return AppleMetadata.model_validate(dict(bag))
        if isinstance(bag, Mapping):
            bag = AndroidMetadata.model_validate(dict(bag))
        if not isinstance(bag, AndroidMetadata):
            raise TypeError(f"Metadata must be a mapping, got {type(bag).__name__}")

        content_created = bag.content_creation_date
        if content_created is None:
            content_created = bag.date_created
        return AppleMetadata(
            creation_date=_iso_from_epoch(bag.date_created),
            modification_date=_iso_from_epoch(bag.date_modified),
            label=bag.label,
            tags=[tag for tag in bag.tags.split(",") if tag] if bag.tags else [],
            uti=bag.uti,
            quarantine_attribute=bag.quarantine_attribute,
            custom_icon=b"",
            finder_flags=bag.finder_flags,
            acl=_load_json(bag.acl, list, "acl"),
            spotlight_comments=bag.spotlight_comments,
            content_creation_date=_iso_from_epoch(content_created),
            custom_metadata=_load_json(bag.custom_metadata, dict, "customMetadata"),
        )
    except (PydanticValidationError, ValueError, TypeError, OverflowError) as e:
        logger.debug(f"Metadata translation failed: {e}")
        raise ValidationError(f"Failed to translate metadata to Apple layout: {e}",
                              operation="to_apple_metadata", original_error=e) from e

#
# End of Metadata_Translator.py
###########################################################################################################################
