"""
Tests for generated-content validation and generator loading.
"""

import pytest

from content_autotest.core.exceptions import GenerationError, PayloadValidationError, UntestableContentError
from content_autotest.models.content import get_content_schema
from content_autotest.services.generation import (
    GenerationRequest,
    UnconfiguredGenerator,
    load_variant_generator,
    validate_control_payload,
    validate_generated_content,
)

from content_autotest.tests.conftest import HERO_PAYLOAD, ScriptedGenerator


class TestValidateGeneratedContent:

    def test_valid_payload_is_returned(self) -> None:
        generated = {**HERO_PAYLOAD, 'title': 'A brighter future starts here'}

        cleaned = validate_generated_content(generated, HERO_PAYLOAD, 'hero')

        assert cleaned == generated

    def test_missing_control_key_is_rejected(self) -> None:
        generated = {key: value for key, value in HERO_PAYLOAD.items() if key != 'button_link'}

        with pytest.raises(PayloadValidationError) as exc_info:
            validate_generated_content(generated, HERO_PAYLOAD, 'hero')

        assert exc_info.value.missing_fields == ['button_link']
        assert exc_info.value.unexpected_fields == []

    def test_unexpected_key_is_rejected(self) -> None:
        generated = {**HERO_PAYLOAD, 'subtitle': 'Extra copy'}

        with pytest.raises(PayloadValidationError) as exc_info:
            validate_generated_content(generated, HERO_PAYLOAD, 'hero')

        assert exc_info.value.unexpected_fields == ['subtitle']

    def test_internal_marker_keys_are_stripped(self) -> None:
        generated = {**HERO_PAYLOAD, '_rationale': 'Shorter headline for parents'}

        cleaned = validate_generated_content(generated, HERO_PAYLOAD, 'hero')

        assert '_rationale' not in cleaned
        assert cleaned == HERO_PAYLOAD

    @pytest.mark.parametrize('generated', [None, 'plain text', ['title']])
    def test_non_object_payload_is_rejected(self, generated) -> None:
        with pytest.raises(PayloadValidationError) as exc_info:
            validate_generated_content(generated, HERO_PAYLOAD, 'hero')

        assert exc_info.value.errors[0].kind == 'invalid_value'

    def test_schema_required_field(self) -> None:
        # The control itself lacks button_text, so the key check passes and
        # the hero schema catches it.
        control = {'title': 'Welcome', 'description': 'Hello'}

        with pytest.raises(PayloadValidationError) as exc_info:
            validate_generated_content({'title': 'Welcome back', 'description': 'Hi'}, control, 'hero')

        assert exc_info.value.missing_fields == ['button_text']

    def test_schema_invalid_value(self) -> None:
        with pytest.raises(PayloadValidationError) as exc_info:
            validate_generated_content({**HERO_PAYLOAD, 'title': ''}, HERO_PAYLOAD, 'hero')

        assert [error.field for error in exc_info.value.errors] == ['title']
        assert exc_info.value.errors[0].kind == 'invalid_value'

    def test_validation_error_is_a_generation_error(self) -> None:
        with pytest.raises(GenerationError):
            validate_generated_content({}, HERO_PAYLOAD, 'hero')

    def test_unknown_content_type_uses_generic_schema(self) -> None:
        control = {'title': 'Partner spotlight', 'order': 3}

        cleaned = validate_generated_content({'title': 'New spotlight', 'order': 4}, control, 'partner')

        assert cleaned == {'title': 'New spotlight', 'order': 4}

    def test_testimonial_schema_requires_quote(self) -> None:
        schema = get_content_schema('testimonial')
        assert schema.model_fields['description'].is_required()


class TestValidateControlPayload:

    def test_valid_live_content_passes(self) -> None:
        assert validate_control_payload(HERO_PAYLOAD, 'hero', 'hero-1') is None

    def test_hero_without_button_text_is_untestable(self) -> None:
        live = {'title': 'Welcome', 'description': 'Our programs'}

        with pytest.raises(UntestableContentError) as exc_info:
            validate_control_payload(live, 'hero', 'hero-7')

        assert exc_info.value.content_item_id == 'hero-7'
        assert [(e.field, e.kind) for e in exc_info.value.errors] == [('button_text', 'missing_field')]
        assert 'hero-7' in str(exc_info.value)


class TestLoadVariantGenerator:

    @pytest.mark.parametrize('path', [None, ''])
    def test_empty_path_gives_unconfigured_generator(self, path) -> None:
        assert isinstance(load_variant_generator(path), UnconfiguredGenerator)

    def test_factory_path_is_imported_and_called(self) -> None:
        generator = load_variant_generator('content_autotest.tests.conftest:ScriptedGenerator')

        assert isinstance(generator, ScriptedGenerator)

    def test_path_without_attribute_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            load_variant_generator('content_autotest.tests.conftest')

    @pytest.mark.asyncio
    async def test_unconfigured_generator_always_fails(self) -> None:
        request = GenerationRequest(
            experiment_id='exp-1',
            content_type='hero',
            content_item_id='hero-1',
            persona='parent',
            funnel_stage='awareness',
            control_payload=HERO_PAYLOAD,
        )

        with pytest.raises(GenerationError):
            await UnconfiguredGenerator().generate(request)
