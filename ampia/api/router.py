from fastapi import APIRouter
from ampia.api.endpoints import me, moderator, payments

# Create main API router
api_router = APIRouter(
    redirect_slashes=False
)  # Disable redirects to preserve Authorization header

# Include all endpoint routers
api_router.include_router(me.router, prefix="/me", tags=["Me"])
api_router.include_router(moderator.router, prefix="/moderator", tags=["Moderation"])
api_router.include_router(payments.router, prefix="/payments", tags=["Payments"])
