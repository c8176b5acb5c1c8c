from nftstatus.api.health import router as health_router
from nftstatus.api.status import router as status_router

__all__ = [
    "health_router",
    "status_router",
]
