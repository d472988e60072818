"""
Core infrastructure: settings, asyncpg pool and the exception hierarchy.

    from content_autotest.core import get_settings, get_db_pool, NotFoundError

FastAPI dependencies live in content_autotest.core.dependencies and are not
re-exported here, since they depend on the service layer.
"""

from content_autotest.core.config import Settings, get_settings
from content_autotest.core.database import (
    init_db,
    get_db_pool,
    close_db,
    execute_query,
    execute_query_one,
    execute_scalar,
    execute_command,
    execute_many,
)
from content_autotest.core.exceptions import (
    AutomationError,
    NotFoundError,
    InvalidTransitionError,
    ProfileMismatchError,
    ControlVariantError,
    GenerationError,
    PayloadFieldError,
    PayloadValidationError,
    UntestableContentError,
    CycleAlreadyRunningError,
)

__all__ = [
    # Configuration
    'Settings',
    'get_settings',
    # Database
    'init_db',
    'get_db_pool',
    'close_db',
    'execute_query',
    'execute_query_one',
    'execute_scalar',
    'execute_command',
    'execute_many',
    # Exceptions
    'AutomationError',
    'NotFoundError',
    'InvalidTransitionError',
    'ProfileMismatchError',
    'ControlVariantError',
    'GenerationError',
    'PayloadFieldError',
    'PayloadValidationError',
    'UntestableContentError',
    'CycleAlreadyRunningError',
]
