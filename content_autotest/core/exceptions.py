"""
Typed errors raised by the automation engine.

Batch steps (baseline recomputation, test creation, evaluation) catch and log
these per item; admin actions (stop, pause, rollback, manual promotion) let them
propagate so the API layer can map them onto HTTP status codes.
"""

from dataclasses import dataclass
from typing import List, Optional


class AutomationError(Exception):
    """Base class for all errors raised by the automation engine."""


class NotFoundError(AutomationError):
    """A referenced experiment, variant, rule or content item does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidTransitionError(AutomationError):
    """An experiment status change not allowed by the lifecycle state machine."""

    def __init__(self, experiment_id: str, current: str, target: str):
        self.experiment_id = experiment_id
        self.current = current
        self.target = target
        super().__init__(
            f"Experiment {experiment_id} cannot move from {current} to {target}"
        )


class ProfileMismatchError(AutomationError):
    """
    A score comparison was attempted across two different weight profiles.

    Composite scores are only comparable when computed with the same profile;
    a delta between scores from different profiles is meaningless.
    """

    def __init__(self, baseline_profile_id: Optional[str], profile_id: Optional[str]):
        self.baseline_profile_id = baseline_profile_id
        self.profile_id = profile_id
        super().__init__(
            f"Baseline was scored with profile {baseline_profile_id}, "
            f"not {profile_id}"
        )


class ControlVariantError(AutomationError):
    """An experiment does not have exactly one identifiable control variant."""


class GenerationError(AutomationError):
    """The content-variant generator failed to produce a payload."""


@dataclass
class PayloadFieldError:
    """One problem found while validating a generated payload."""

    field: str
    kind: str  # missing_field | unexpected_field | invalid_value
    message: str


class PayloadValidationError(GenerationError):
    """Generated content did not match the control payload or its content schema."""

    def __init__(self, content_type: str, errors: List[PayloadFieldError]):
        self.content_type = content_type
        self.errors = errors
        summary = "; ".join(f"{e.kind}: {e.field}" for e in errors)
        super().__init__(f"Invalid generated {content_type} content ({summary})")

    @property
    def missing_fields(self) -> List[str]:
        return [e.field for e in self.errors if e.kind == 'missing_field']

    @property
    def unexpected_fields(self) -> List[str]:
        return [e.field for e in self.errors if e.kind == 'unexpected_field']


class UntestableContentError(AutomationError):
    """Live content fails its content-type schema, so no generated variant could pass either."""

    def __init__(self, content_type: str, content_item_id: str, errors: List[PayloadFieldError]):
        self.content_type = content_type
        self.content_item_id = content_item_id
        self.errors = errors
        summary = "; ".join(f"{e.kind}: {e.field}" for e in errors)
        super().__init__(f"Live {content_type} {content_item_id} cannot be tested ({summary})")


class CycleAlreadyRunningError(AutomationError):
    """A scheduler cycle was requested while another one is still running."""

    def __init__(self):
        super().__init__("An automation cycle is already running")
