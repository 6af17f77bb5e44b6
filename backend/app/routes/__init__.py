from app.routes.signing import router as signing_router
from app.routes.envelopes import router as envelopes_router
from app.routes.admin import router as admin_router

__all__ = ["signing_router", "envelopes_router", "admin_router"]
