"""
Content-variant generator contract and validation of generated payloads.

The generator itself (an LLM integration) is an external collaborator. This
module defines what the engine sends it (GenerationRequest), what it must
return (GeneratedContent), and how its output is checked before a variant is
persisted:

1. Key set against the control payload: every control key must be present;
   keys absent from the control are rejected unless they start with the
   internal-marker prefix "_".
2. Schema: the remaining fields are validated against the content type's
   pydantic schema from models/content.py.

Both checks report through PayloadValidationError with typed field errors.
Internal-marker keys are stripped from the returned payload.
validate_control_payload runs the schema check on live content before any
generation is requested.

The host configures a concrete generator through settings.variant_generator,
a "module:attribute" path to a factory returning a VariantGenerator.
"""

import importlib
import logging
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field, ValidationError

from content_autotest.core.exceptions import (
    GenerationError,
    PayloadFieldError,
    PayloadValidationError,
    UntestableContentError,
)
from content_autotest.models.content import get_content_schema


logger = logging.getLogger(__name__)

INTERNAL_MARKER_PREFIX = '_'


class PerformanceContext(BaseModel):
    """Why the content was flagged, passed to the generator as guidance."""

    triggered_metrics: List[str] = Field(default_factory=list)
    composite_score: int = 0
    reason: str = ""


class GenerationRequest(BaseModel):
    experiment_id: str
    content_type: str
    content_item_id: str
    persona: str
    funnel_stage: str
    control_payload: Dict[str, Any]
    performance: Optional[PerformanceContext] = None
    attempt: int = 1


class GeneratedContent(BaseModel):
    payload: Any
    generator_model: Optional[str] = None
    tokens_used: Optional[int] = None


class VariantGenerator(Protocol):
    """Produces one new content payload per call; raises GenerationError on failure."""

    async def generate(self, request: GenerationRequest) -> GeneratedContent: ...


class UnconfiguredGenerator:
    """Placeholder used when no generator is configured; every attempt fails."""

    async def generate(self, request: GenerationRequest) -> GeneratedContent:
        raise GenerationError("No variant generator configured (set VARIANT_GENERATOR)")


def load_variant_generator(path: Optional[str]) -> VariantGenerator:
    """
    Import a generator factory from a "package.module:attribute" path and call it.

    Returns an UnconfiguredGenerator when path is empty.
    """
    if not path:
        logger.warning("No variant generator configured; automated tests will have no challengers")
        return UnconfiguredGenerator()

    module_name, _, attribute = path.partition(':')
    if not attribute:
        raise ValueError(f"Generator path must look like 'module:attribute', got {path!r}")

    factory = getattr(importlib.import_module(module_name), attribute)
    return factory()


# =============================================================================
# Validation
# =============================================================================

def _is_internal(key: str) -> bool:
    return key.startswith(INTERNAL_MARKER_PREFIX)


def validate_generated_content(
    generated: Any,
    control_payload: Dict[str, Any],
    content_type: str,
) -> Dict[str, Any]:
    """
    Validate a generated payload against the control payload and content schema.

    Args:
        generated: Raw generator output (expected to be a JSON object).
        control_payload: The live content snapshot stored as the control variant.
        content_type: Content type, selects the pydantic schema.

    Returns:
        Dict[str, Any]: The payload without internal-marker keys.

    Raises:
        PayloadValidationError: On missing, unexpected or invalid fields.
    """
    if not isinstance(generated, dict):
        raise PayloadValidationError(content_type, [
            PayloadFieldError('<root>', 'invalid_value', f"Expected an object, got {type(generated).__name__}")
        ])

    errors: List[PayloadFieldError] = []

    for key in control_payload:
        if key not in generated:
            errors.append(PayloadFieldError(key, 'missing_field', f"Field {key!r} is required"))

    for key in generated:
        if key not in control_payload and not _is_internal(key):
            errors.append(PayloadFieldError(key, 'unexpected_field', f"Field {key!r} is not in the control"))

    if errors:
        raise PayloadValidationError(content_type, errors)

    cleaned = {key: value for key, value in generated.items() if not _is_internal(key)}

    field_errors = _schema_errors(cleaned, content_type)
    if field_errors:
        raise PayloadValidationError(content_type, field_errors)

    return cleaned


def _schema_errors(payload: Dict[str, Any], content_type: str) -> List[PayloadFieldError]:
    try:
        get_content_schema(content_type).model_validate(payload)
    except ValidationError as e:
        field_errors = []
        for item in e.errors():
            location = '.'.join(str(part) for part in item['loc']) or '<root>'
            kind = 'missing_field' if item['type'] == 'missing' else (
                'unexpected_field' if item['type'] == 'extra_forbidden' else 'invalid_value'
            )
            field_errors.append(PayloadFieldError(location, kind, item['msg']))
        return field_errors
    return []


def validate_control_payload(payload: Dict[str, Any], content_type: str, content_item_id: str) -> None:
    """
    Reject live content that does not satisfy its content-type schema.

    Generated variants keep the control's key set, so a control missing a
    required field (a NULL button_text on a hero) makes every attempt fail.

    Raises:
        UntestableContentError: If the schema rejects the live payload.
    """
    field_errors = _schema_errors(payload, content_type)
    if field_errors:
        raise UntestableContentError(content_type, content_item_id, field_errors)
