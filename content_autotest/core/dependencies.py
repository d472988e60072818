"""
FastAPI dependencies for the automation admin API.

- get_settings_dependency / SettingsDep: the cached Settings singleton
- get_automation_services / AutomationServicesDep: the service bundle built in
  the application lifespan and stored on app.state.automation

Both are thin wrappers so tests can replace them through
app.dependency_overrides.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from content_autotest.core.config import Settings, get_settings
from content_autotest.jobs.automation_scheduler import AutomationServices


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    return get_settings()


SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]


# =============================================================================
# Automation Services Dependency
# =============================================================================

def get_automation_services(request: Request) -> AutomationServices:
    """
    Return the service bundle attached to the running application.

    Raises:
        HTTPException 503: If the lifespan has not built the services
            (database unavailable at startup).
    """
    services = getattr(request.app.state, 'automation', None)
    if services is None:
        raise HTTPException(status_code=503, detail="Automation services are not initialized")
    return services


AutomationServicesDep = Annotated[AutomationServices, Depends(get_automation_services)]
