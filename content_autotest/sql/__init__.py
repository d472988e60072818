"""
Parameterized SQL for the Postgres content store and event source.
"""

from content_autotest.sql.automation_queries import (
    CONTENT_COLUMNS,
    EXPERIMENT_COLUMNS,
    UPDATABLE_EXPERIMENT_COLUMNS,
    UPDATABLE_RUN_COLUMNS,
    get_content_payload_query,
    get_content_override_query,
    get_content_refs_query,
    get_content_item_ids_query,
    get_variant_ids_with_events_query,
    get_event_aggregate_query,
    get_profiles_for_content_type_query,
    get_profile_by_id_query,
    get_delete_baseline_query,
    get_insert_baseline_query,
    get_latest_baseline_query,
    get_baseline_scores_query,
    get_active_rules_query,
    get_rule_by_id_query,
    get_safety_limits_query,
    get_insert_safety_limits_query,
    get_insert_experiment_query,
    get_experiment_by_id_query,
    get_experiments_query,
    get_count_experiments_query,
    get_update_experiment_query,
    get_delete_completed_experiments_query,
    get_promotion_history_query,
    get_insert_variant_query,
    get_variant_by_id_query,
    get_variants_for_experiment_query,
    get_insert_target_query,
    get_insert_generation_query,
    get_count_generations_since_query,
    get_generation_counts_for_experiment_query,
    get_insert_run_query,
    get_update_run_query,
    get_recent_runs_query,
)

__all__ = [
    'CONTENT_COLUMNS',
    'EXPERIMENT_COLUMNS',
    'UPDATABLE_EXPERIMENT_COLUMNS',
    'UPDATABLE_RUN_COLUMNS',
    'get_content_payload_query',
    'get_content_override_query',
    'get_content_refs_query',
    'get_content_item_ids_query',
    'get_variant_ids_with_events_query',
    'get_event_aggregate_query',
    'get_profiles_for_content_type_query',
    'get_profile_by_id_query',
    'get_delete_baseline_query',
    'get_insert_baseline_query',
    'get_latest_baseline_query',
    'get_baseline_scores_query',
    'get_active_rules_query',
    'get_rule_by_id_query',
    'get_safety_limits_query',
    'get_insert_safety_limits_query',
    'get_insert_experiment_query',
    'get_experiment_by_id_query',
    'get_experiments_query',
    'get_count_experiments_query',
    'get_update_experiment_query',
    'get_delete_completed_experiments_query',
    'get_promotion_history_query',
    'get_insert_variant_query',
    'get_variant_by_id_query',
    'get_variants_for_experiment_query',
    'get_insert_target_query',
    'get_insert_generation_query',
    'get_count_generations_since_query',
    'get_generation_counts_for_experiment_query',
    'get_insert_run_query',
    'get_update_run_query',
    'get_recent_runs_query',
]
