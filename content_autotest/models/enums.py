"""
Enumeration definitions for the content experiment automation engine.

All enums inherit from both `str` and `Enum` so they serialize as plain strings
in Pydantic models, API responses and database parameters.
"""

from enum import Enum


class Persona(str, Enum):
    """
    Audience personas used to segment baselines, rules and experiment targets.

    A rule with no explicit persona list targets all of these.
    """
    PARENT = "parent"
    EDUCATOR = "educator"
    DONOR = "donor"
    VOLUNTEER = "volunteer"
    COMMUNITY_PARTNER = "community_partner"
    STUDENT = "student"


class FunnelStage(str, Enum):
    """Funnel stages used alongside Persona for segmentation."""
    AWARENESS = "awareness"
    CONSIDERATION = "consideration"
    CONVERSION = "conversion"
    RETENTION = "retention"


class MetricKey(str, Enum):
    """
    Metric keys understood by the scorer.

    Normalization by family:
    - Rates (CTA_CLICK, CONVERSION, SCROLL_DEPTH): percentages clipped to [0, 100], divided by 100
    - Duration (DWELL_TIME): seconds scaled against a 300 second ceiling
    - Counts (UNIQUE_VIEWS, TOTAL_EVENTS): log10(value + 1) / 3, capped at 1

    COMPOSITE_SCORE is only valid in rule thresholds; it reads the baseline's
    composite score directly.
    """
    CTA_CLICK = "cta_click"
    CONVERSION = "conversion"
    DWELL_TIME = "dwell_time"
    SCROLL_DEPTH = "scroll_depth"
    UNIQUE_VIEWS = "unique_views"
    TOTAL_EVENTS = "total_events"
    COMPOSITE_SCORE = "composite_score"


class MetricDirection(str, Enum):
    """Whether a higher or a lower value of a weighted metric is better."""
    MAXIMIZE = "maximize"
    MINIMIZE = "minimize"


class ThresholdType(str, Enum):
    """
    How a rule threshold is compared against a baseline metric.

    - PERCENTILE: the value's derived percentile <= threshold
    - ABSOLUTE: value < threshold
    - CHANGE_RATE: needs a comparison baseline; never triggers
    """
    PERCENTILE = "percentile"
    ABSOLUTE = "absolute"
    CHANGE_RATE = "change_rate"


class ExperimentStatus(str, Enum):
    """
    Experiment lifecycle status.

    draft -> active <-> paused -> completed (terminal)
    """
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class RunStatus(str, Enum):
    """Status of one scheduler cycle's AutomationRun record."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RunTrigger(str, Enum):
    """What started a scheduler cycle."""
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class SchedulerState(str, Enum):
    """Re-entrancy state of the scheduler: at most one cycle runs at a time."""
    IDLE = "idle"
    RUNNING = "running"


class GenerationStatus(str, Enum):
    """Outcome of a single variant-generation attempt."""
    SUCCESS = "success"
    FAILED = "failed"


class StopReason(str, Enum):
    """Early-stop decision returned by the Bayesian comparison primitive."""
    WINNER_FOUND = "winner_found"
    FUTILITY_STOPPED = "futility_stopped"
    CONTINUE_TESTING = "continue_testing"


class PromotionAction(str, Enum):
    """What the promotion step did with one evaluated experiment."""
    PROMOTED = "promoted"
    STOPPED = "stopped"
    CONTINUE = "continue"
    SKIPPED = "skipped"


class CreationOutcome(str, Enum):
    """Result of creating and activating one experiment from a candidate."""
    ACTIVATED = "activated"
    DISCARDED = "discarded"
    FAILED = "failed"
