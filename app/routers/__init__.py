from app.routers.extractions import router as extractions_router
from app.routers.health import router as health_router

__all__ = ["health_router", "extractions_router"]
