from .admin import router as admin_router
from .attendance import router as attendance_router
from .health import router as health_router

# for wildcard imports
__all__ = ["admin_router", "attendance_router", "health_router"]
