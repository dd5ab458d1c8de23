"""
Pydantic schemas for versioned site content.

Content values are a tagged union keyed by ``type``. Every value is checked
against its variant both when an editor saves it and when it is read back
from storage, so a malformed row can never reach a page render.
"""

from datetime import datetime
import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import Field, TypeAdapter, ValidationError, field_validator

from ..core.exceptions import ValidationException
from .base import StandardizedModel, StrictModel

ContentType = Literal["text", "rich_text", "image", "json"]
CONTENT_TYPES = ("text", "rich_text", "image", "json")


class TextValue(StrictModel):
    type: Literal["text"] = "text"
    text: str


class RichTextValue(StrictModel):
    type: Literal["rich_text"] = "rich_text"
    html: str


class ImageValue(StrictModel):
    type: Literal["image"] = "image"
    url: str = Field(..., min_length=1, max_length=2048)
    alt_text: Optional[str] = Field(None, max_length=500)

    @field_validator("url")
    @classmethod
    def _http_or_root_relative(cls, value: str) -> str:
        lowered = value.lower()
        if lowered.startswith(("http://", "https://")) or (
            value.startswith("/") and not value.startswith("//")
        ):
            return value
        raise ValueError("Image url must be http(s) or a root-relative path")


class JsonValue(StrictModel):
    type: Literal["json"] = "json"
    data: Union[Dict[str, Any], List[Any]]


ContentValue = Annotated[
    Union[TextValue, RichTextValue, ImageValue, JsonValue],
    Field(discriminator="type"),
]

CONTENT_VALUE_ADAPTER: TypeAdapter[Any] = TypeAdapter(ContentValue)


def _error_details(exc: ValidationError) -> List[Dict[str, Any]]:
    return [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


def _normalize_raw(content_type: str, raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict) and "type" in raw:
        if raw["type"] != content_type:
            raise ValidationException(
                f"Value is tagged '{raw['type']}' but content type is '{content_type}'"
            )
        return raw
    if content_type == "text":
        if not isinstance(raw, str):
            raise ValidationException("Text content must be a string")
        return {"type": "text", "text": raw}
    if content_type == "rich_text":
        if not isinstance(raw, str):
            raise ValidationException("Rich text content must be an HTML string")
        return {"type": "rich_text", "html": raw}
    if content_type == "image":
        if isinstance(raw, str):
            return {"type": "image", "url": raw}
        if isinstance(raw, dict):
            return {"type": "image", **raw}
        raise ValidationException("Image content must be a URL or an object with a url")
    if content_type == "json":
        data = raw
        if isinstance(raw, str):
            try:
                data = json.loads(raw)
            except ValueError:
                raise ValidationException("JSON content must be valid JSON")
        if not isinstance(data, (dict, list)):
            raise ValidationException("JSON content must be an object or an array")
        return {"type": "json", "data": data}
    raise ValidationException(
        f"Unknown content type '{content_type}'",
        details={"allowed_types": list(CONTENT_TYPES)},
    )


def build_content_value(content_type: str, raw: Any) -> Any:
    """Validate editor input for ``content_type`` and return the typed variant."""
    normalized = _normalize_raw(content_type, raw)
    try:
        return CONTENT_VALUE_ADAPTER.validate_python(normalized)
    except ValidationError as exc:
        raise ValidationException(
            f"Invalid {content_type} content", details={"errors": _error_details(exc)}
        )


def dump_content_value(value: Any) -> Dict[str, Any]:
    return CONTENT_VALUE_ADAPTER.dump_python(value, mode="json")


class ContentItem(StandardizedModel):
    """One editable piece of content on a page."""

    page: str
    key: str
    value: ContentValue
    version: int = Field(..., ge=1)
    updated_by: str
    updated_at: datetime

    @property
    def type(self) -> str:
        return str(self.value.type)


class ContentVersion(StandardizedModel):
    """Historical snapshot written alongside every committed save."""

    page: str
    key: str
    version: int = Field(..., ge=1)
    value: ContentValue
    updated_by: str
    created_at: datetime


class SaveResult(StandardizedModel):
    success: bool
    version: Optional[int] = Field(
        None, description="New version on success; current version on conflict"
    )
    conflict: bool = False


class ContentChange(StandardizedModel):
    """Published to subscribers after a save commits."""

    page: str
    key: str
    version: int
    type: ContentType
    updated_by: str
    restored_from: Optional[int] = None


class ContentSaveRequest(StrictModel):
    value: Any
    type: ContentType
    expected_version: Optional[int] = Field(
        None, ge=0, description="Version the editor last saw; 0 means the item must not exist yet"
    )


class ContentRestoreRequest(StrictModel):
    version: int = Field(..., ge=1, description="Historical version to restore")
    expected_version: Optional[int] = Field(None, ge=0)


class ContentSaveResponse(StandardizedModel):
    success: bool = True
    version: int


class ContentPageResponse(StandardizedModel):
    page: str
    items: List[ContentItem]
    count: int


class ContentHistoryResponse(StandardizedModel):
    page: str
    key: str
    items: List[ContentVersion]


__all__ = [
    "CONTENT_TYPES",
    "ContentChange",
    "ContentHistoryResponse",
    "ContentItem",
    "ContentPageResponse",
    "ContentRestoreRequest",
    "ContentSaveRequest",
    "ContentSaveResponse",
    "ContentType",
    "ContentValue",
    "ContentVersion",
    "ImageValue",
    "JsonValue",
    "RichTextValue",
    "SaveResult",
    "TextValue",
    "build_content_value",
    "dump_content_value",
]
