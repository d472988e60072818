'''
Content automation test suite.

Test Modules:
-------------
- test_scoring.py: normalization, composite bounds and determinism, profile mismatch
- test_baselines.py: rolling-window baselines, segment grid, per-item isolation
- test_rule_engine.py: thresholds, 29/30 sample boundary, safety truncation order
- test_generation.py: generated payload validation and generator loading
- test_lifecycle.py: experiment creation, status machine, batch creation
- test_bayesian.py: Beta-Binomial comparison, early stop, sample size helpers
- test_evaluation.py: control selection and winner decisions
- test_promotion.py: promotion idempotence, rollback, auto-promotion
- test_scheduler.py: full cycle, safety budget, re-entrancy guard
- test_slack_digest.py: cycle digest formatting and sending
- test_store.py: Postgres adapters against a mocked asyncpg pool
- test_api.py: admin routes through FastAPI's TestClient

Fixtures live in conftest.py.
'''

__all__ = []
