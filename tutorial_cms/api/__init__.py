# Tutorial CMS API routers
from tutorial_cms.api.auth import router as auth_router
from tutorial_cms.api.health import router as health_router

__all__ = [
    "auth_router",
    "health_router",
]
