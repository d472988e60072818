"""
Background jobs: the automation cycle scheduler and its Slack digest.
"""

from content_autotest.jobs.automation_scheduler import (
    AutomationScheduler,
    AutomationServices,
    CycleGuard,
    build_automation_services,
    max_tests_creatable,
    start_of_utc_day,
)
from content_autotest.jobs.slack_digest import (
    format_cycle_message,
    is_noteworthy,
    send_cycle_digest,
)

__all__ = [
    'AutomationScheduler',
    'AutomationServices',
    'CycleGuard',
    'build_automation_services',
    'max_tests_creatable',
    'start_of_utc_day',
    'format_cycle_message',
    'is_noteworthy',
    'send_cycle_digest',
]
