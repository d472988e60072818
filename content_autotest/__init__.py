"""
Content experiment automation engine.

Finds underperforming content items from aggregated analytics, generates
challenger variants, runs A/B experiments against the original, judges them
with Bayesian statistics and promotes winners to live content.

Subpackages:
    - api: FastAPI admin routes
    - core: Configuration, database pool, exceptions and dependencies
    - models: Pydantic schemas, enums and content payload schemas
    - services: Scoring, baselines, rules, generation, lifecycle, evaluation, promotion
    - jobs: Automation scheduler and Slack cycle digest
    - sql: Parameterized SQL queries
"""

__version__ = "1.0.0"
