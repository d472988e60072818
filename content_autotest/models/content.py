"""
Per-content-type payload schemas.

A variant payload has the same shape as the live content item it overrides.
Generated payloads are validated against the schema registered for their
content type before a variant is persisted (see services/generation.py).

Content types without a dedicated schema use ContentItemPayload.
"""

from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field


class ContentItemPayload(BaseModel):
    """Presentational fields of a live content item."""

    model_config = ConfigDict(extra='forbid')

    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    image_name: Optional[str] = None
    image_url: Optional[str] = None
    button_text: Optional[str] = None
    button_link: Optional[str] = None
    order: Optional[int] = None
    passion_tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None


class HeroPayload(ContentItemPayload):
    """Hero banners always carry a call to action."""

    button_text: str = Field(..., min_length=1)


class ServicePayload(ContentItemPayload):
    description: str = Field(..., min_length=1)


class TestimonialPayload(ContentItemPayload):
    description: str = Field(..., min_length=1, description="Quote text")


_CONTENT_SCHEMAS: Dict[str, Type[ContentItemPayload]] = {
    'hero': HeroPayload,
    'service': ServicePayload,
    'testimonial': TestimonialPayload,
}


def get_content_schema(content_type: str) -> Type[ContentItemPayload]:
    """Return the payload schema for a content type, falling back to the generic one."""
    return _CONTENT_SCHEMAS.get(content_type, ContentItemPayload)


def register_content_schema(content_type: str, schema: Type[ContentItemPayload]) -> None:
    _CONTENT_SCHEMAS[content_type] = schema
