from fastapi import APIRouter

from app.api.v1.endpoints import (
    # Inspection workflow configuration
    workflows,
    # Inspections & approver decisions
    inspections,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Workflows ====================
api_router.include_router(
    workflows.router,
    prefix="/workflows",
    tags=["Workflows"]
)

# ==================== Inspections ====================
api_router.include_router(
    inspections.router,
    prefix="/inspections",
    tags=["Inspections"]
)
