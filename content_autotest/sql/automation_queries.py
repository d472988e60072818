"""
Parameterized SQL for the Postgres content store and event source.

Each function returns a PostgreSQL statement using $n placeholders; callers in
services/store.py pass the parameters positionally through core/database.py.

Tables:
    content_items                     live content (presentational fields)
    ab_tests                          experiments
    ab_test_variants                  variants (configuration = override payload)
    ab_test_targets                   persona x funnel stage targets of an experiment
    ab_test_assignments               session -> variant assignments with persona/stage
    ab_test_events                    page_view / cta_click / engagement events
    ab_test_performance_baselines     rolling baselines, overwritten each cycle
    ab_test_metric_weight_profiles    weighted metric profiles (metrics jsonb)
    ab_test_automation_rules          rules (metric_thresholds jsonb)
    ab_test_safety_limits             singleton safety limits
    ab_test_automation_runs           one row per scheduler cycle
    ab_test_variant_ai_generations    one row per generation attempt
"""

from typing import Iterable, Optional


# Presentational columns of content_items that a variant payload may override
CONTENT_COLUMNS = (
    'title',
    'description',
    'image_name',
    'image_url',
    'button_text',
    'button_link',
    'order',
    'passion_tags',
    'metadata',
)

EXPERIMENT_COLUMNS = (
    'id, name, description, content_type, content_item_id, status, traffic_allocation, '
    'is_automated, rule_id, persona, funnel_stage, winner_variant_id, start_date, end_date, '
    'created_at, updated_at'
)

# Columns the lifecycle and promotion services are allowed to update
UPDATABLE_EXPERIMENT_COLUMNS = frozenset({
    'status',
    'winner_variant_id',
    'start_date',
    'end_date',
    'traffic_allocation',
    'description',
})

UPDATABLE_RUN_COLUMNS = frozenset({
    'status',
    'candidates_found',
    'tests_created',
    'results',
    'error_message',
    'completed_at',
})


def _quote(column: str) -> str:
    # "order" is reserved
    return f'"{column}"'


# =============================================================================
# Live Content
# =============================================================================

def get_content_payload_query() -> str:
    columns = ', '.join(_quote(c) for c in CONTENT_COLUMNS)
    return f"SELECT {columns} FROM content_items WHERE id = $1"


def get_content_override_query(columns: Iterable[str]) -> str:
    """
    UPDATE content_items for the given payload columns.

    $1 is the content item id; payload values follow as $2, $3, ...
    Columns outside CONTENT_COLUMNS are rejected.
    """
    columns = list(columns)
    unknown = [c for c in columns if c not in CONTENT_COLUMNS]
    if unknown:
        raise ValueError(f"Not a content column: {', '.join(unknown)}")
    if not columns:
        raise ValueError("Content override needs at least one column")

    assignments = ', '.join(f"{_quote(c)} = ${i}" for i, c in enumerate(columns, start=2))
    return f"UPDATE content_items SET {assignments}, updated_at = NOW() WHERE id = $1"


def get_content_refs_query() -> str:
    """Distinct (content_type, content_item_id) referenced by any experiment."""
    return """
        SELECT DISTINCT content_type, content_item_id
        FROM ab_tests
        WHERE content_item_id IS NOT NULL
        ORDER BY content_type, content_item_id
    """


def get_content_item_ids_query() -> str:
    return """
        SELECT DISTINCT content_item_id
        FROM ab_tests
        WHERE content_type = $1 AND content_item_id IS NOT NULL
        ORDER BY content_item_id
    """


# =============================================================================
# Events
# =============================================================================

def get_variant_ids_with_events_query() -> str:
    """Variants of a content item's experiments with at least one event in [$3, $4]."""
    return """
        SELECT DISTINCT v.id
        FROM ab_test_variants v
        JOIN ab_tests t ON t.id = v.test_id
        JOIN ab_test_events e ON e.variant_id = v.id
        WHERE t.content_type = $1
          AND t.content_item_id = $2
          AND e.created_at >= $3
          AND e.created_at <= $4
    """


def get_event_aggregate_query() -> str:
    """
    Aggregate event counts for a set of variants.

    Parameters: $1 variant ids (text[]), $2 window start, $3 window end,
    $4 persona, $5 funnel stage. NULL window bounds and segments are unfiltered.
    Dwell time and scroll depth come from event metadata (dwellTime, scrollDepth).
    """
    return """
        SELECT
            COUNT(*) FILTER (WHERE e.event_type = 'page_view') AS total_views,
            COUNT(DISTINCT e.session_id) FILTER (WHERE e.event_type = 'page_view') AS unique_views,
            COUNT(*) FILTER (WHERE e.event_type <> 'page_view') AS total_events,
            COUNT(*) FILTER (WHERE e.event_type = 'cta_click') AS cta_clicks,
            COALESCE(AVG((e.metadata->>'dwellTime')::float)
                FILTER (WHERE e.metadata ? 'dwellTime'), 0) AS dwell_time_avg,
            COALESCE(AVG((e.metadata->>'scrollDepth')::float)
                FILTER (WHERE e.metadata ? 'scrollDepth'), 0) AS scroll_depth_avg
        FROM ab_test_events e
        LEFT JOIN ab_test_assignments a ON a.id = e.assignment_id
        WHERE e.variant_id = ANY($1::text[])
          AND ($2::timestamptz IS NULL OR e.created_at >= $2)
          AND ($3::timestamptz IS NULL OR e.created_at <= $3)
          AND ($4::text IS NULL OR a.persona = $4)
          AND ($5::text IS NULL OR a.funnel_stage = $5)
    """


# =============================================================================
# Profiles, Baselines, Rules, Safety Limits
# =============================================================================

def get_profiles_for_content_type_query() -> str:
    return """
        SELECT id, content_type, name, is_default, metrics
        FROM ab_test_metric_weight_profiles
        WHERE content_type = $1
        ORDER BY is_default DESC, name
    """


def get_profile_by_id_query() -> str:
    return """
        SELECT id, content_type, name, is_default, metrics
        FROM ab_test_metric_weight_profiles
        WHERE id = $1
    """


def get_delete_baseline_query() -> str:
    """Delete the baseline for one key; persona/stage NULL match the overall baseline."""
    return """
        DELETE FROM ab_test_performance_baselines
        WHERE content_type = $1
          AND content_item_id = $2
          AND persona IS NOT DISTINCT FROM $3
          AND funnel_stage IS NOT DISTINCT FROM $4
          AND window_days = $5
    """


def get_insert_baseline_query() -> str:
    return """
        INSERT INTO ab_test_performance_baselines (
            id, content_type, content_item_id, persona, funnel_stage,
            window_start, window_end, window_days,
            total_views, unique_views, total_events, metric_breakdown,
            composite_score, sample_size, variance, profile_id, computed_at
        ) VALUES (
            $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17
        )
        RETURNING *
    """


def get_latest_baseline_query() -> str:
    return """
        SELECT *
        FROM ab_test_performance_baselines
        WHERE content_type = $1
          AND content_item_id = $2
          AND persona IS NOT DISTINCT FROM $3
          AND funnel_stage IS NOT DISTINCT FROM $4
        ORDER BY computed_at DESC
        LIMIT 1
    """


def get_baseline_scores_query() -> str:
    """Composite scores of all baselines in a (content type, persona, stage) segment."""
    return """
        SELECT composite_score
        FROM ab_test_performance_baselines
        WHERE content_type = $1
          AND persona IS NOT DISTINCT FROM $2
          AND funnel_stage IS NOT DISTINCT FROM $3
          AND ($4::text IS NULL OR profile_id = $4)
    """


def get_active_rules_query(content_type: Optional[str] = None) -> str:
    content_filter = "AND content_type = $1" if content_type else ""
    return f"""
        SELECT *
        FROM ab_test_automation_rules
        WHERE is_active = TRUE
          {content_filter}
        ORDER BY created_at
    """


def get_rule_by_id_query() -> str:
    return "SELECT * FROM ab_test_automation_rules WHERE id = $1"


def get_safety_limits_query() -> str:
    return """
        SELECT max_concurrent_tests, max_daily_generations, max_variants_per_test
        FROM ab_test_safety_limits
        ORDER BY updated_at DESC
        LIMIT 1
    """


def get_insert_safety_limits_query() -> str:
    return """
        INSERT INTO ab_test_safety_limits (
            id, max_concurrent_tests, max_daily_generations, max_variants_per_test, updated_at
        ) VALUES ($1, $2, $3, $4, NOW())
    """


# =============================================================================
# Experiments, Variants, Targets, Generations
# =============================================================================

def get_insert_experiment_query() -> str:
    return f"""
        INSERT INTO ab_tests (
            id, name, description, content_type, content_item_id, status,
            traffic_allocation, is_automated, rule_id, persona, funnel_stage,
            created_at, updated_at
        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, NOW(), NOW())
        RETURNING {EXPERIMENT_COLUMNS}
    """


def get_experiment_by_id_query() -> str:
    return f"SELECT {EXPERIMENT_COLUMNS} FROM ab_tests WHERE id = $1"


def get_experiments_query() -> str:
    """Experiments filtered by optional status ($1) and is_automated ($2)."""
    return f"""
        SELECT {EXPERIMENT_COLUMNS}
        FROM ab_tests
        WHERE ($1::text IS NULL OR status = $1)
          AND ($2::boolean IS NULL OR is_automated = $2)
        ORDER BY created_at DESC
    """


def get_count_experiments_query() -> str:
    return """
        SELECT COUNT(*)
        FROM ab_tests
        WHERE ($1::text IS NULL OR status = $1)
          AND ($2::boolean IS NULL OR is_automated = $2)
    """


def get_update_experiment_query(columns: Iterable[str]) -> str:
    """UPDATE ab_tests; $1 is the experiment id, column values follow."""
    columns = list(columns)
    unknown = [c for c in columns if c not in UPDATABLE_EXPERIMENT_COLUMNS]
    if unknown:
        raise ValueError(f"Cannot update experiment column(s): {', '.join(unknown)}")

    assignments = ', '.join(f"{c} = ${i}" for i, c in enumerate(columns, start=2))
    return f"""
        UPDATE ab_tests
        SET {assignments}, updated_at = NOW()
        WHERE id = $1
        RETURNING {EXPERIMENT_COLUMNS}
    """


def get_delete_completed_experiments_query() -> str:
    """Delete completed automated experiments that ended before $1; returns deleted ids."""
    return """
        DELETE FROM ab_tests
        WHERE is_automated = TRUE
          AND status = 'completed'
          AND end_date < $1
        RETURNING id
    """


def get_promotion_history_query() -> str:
    return f"""
        SELECT {EXPERIMENT_COLUMNS}
        FROM ab_tests
        WHERE status = 'completed' AND winner_variant_id IS NOT NULL
        ORDER BY end_date DESC NULLS LAST
        LIMIT $1
    """


def get_insert_variant_query() -> str:
    return """
        INSERT INTO ab_test_variants (id, test_id, name, configuration, is_control, created_at)
        VALUES ($1, $2, $3, $4, $5, NOW())
        RETURNING id, test_id, name, configuration, is_control, created_at
    """


def get_variant_by_id_query() -> str:
    return """
        SELECT id, test_id, name, configuration, is_control, created_at
        FROM ab_test_variants
        WHERE id = $1
    """


def get_variants_for_experiment_query() -> str:
    return """
        SELECT id, test_id, name, configuration, is_control, created_at
        FROM ab_test_variants
        WHERE test_id = $1
        ORDER BY is_control DESC, created_at
    """


def get_insert_target_query() -> str:
    return """
        INSERT INTO ab_test_targets (id, test_id, persona, funnel_stage)
        VALUES ($1, $2, $3, $4)
    """


def get_insert_generation_query() -> str:
    return """
        INSERT INTO ab_test_variant_ai_generations (
            id, test_id, variant_id, status, error_message, model, tokens_used, created_at
        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
    """


def get_count_generations_since_query() -> str:
    return "SELECT COUNT(*) FROM ab_test_variant_ai_generations WHERE created_at >= $1"


def get_generation_counts_for_experiment_query() -> str:
    return """
        SELECT status, COUNT(*) AS count
        FROM ab_test_variant_ai_generations
        WHERE test_id = $1
        GROUP BY status
    """


# =============================================================================
# Automation Runs
# =============================================================================

def get_insert_run_query() -> str:
    return """
        INSERT INTO ab_test_automation_runs (
            id, status, trigger, candidates_found, tests_created, results, started_at
        ) VALUES ($1, $2, $3, 0, 0, '{}'::jsonb, $4)
        RETURNING *
    """


def get_update_run_query(columns: Iterable[str]) -> str:
    columns = list(columns)
    unknown = [c for c in columns if c not in UPDATABLE_RUN_COLUMNS]
    if unknown:
        raise ValueError(f"Cannot update run column(s): {', '.join(unknown)}")

    assignments = ', '.join(f"{c} = ${i}" for i, c in enumerate(columns, start=2))
    return f"UPDATE ab_test_automation_runs SET {assignments} WHERE id = $1 RETURNING *"


def get_recent_runs_query() -> str:
    return """
        SELECT *
        FROM ab_test_automation_runs
        ORDER BY started_at DESC
        LIMIT $1
    """
