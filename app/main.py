from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.config import settings
from app.api.deps import DB
from app.api.v1.router import api_router
from app.database import init_db
from app.services.inspection_state_machine import InspectionDecisionError


logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# HTTP status per decision error code
ERROR_STATUS_CODES = {
    "WORKFLOW_NOT_FOUND": 404,
    "INSPECTION_NOT_FOUND": 404,
    "INVALID_SUBMISSION": 400,
    "NOT_AN_APPROVER": 403,
    "OUT_OF_TURN": 409,
    "ALREADY_DECIDED": 409,
    "DECISION_CONFLICT": 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create tables that do not exist yet (migrations remain the source of
      truth for production schemas)
    """
    logger.info("Starting %s v%s", settings.APP_NAME, settings.APP_VERSION)
    await init_db()

    yield

    logger.info("Shutting down...")


OPENAPI_TAGS = [
    {"name": "Workflows", "description": "Inspection workflow templates and approval settings"},
    {"name": "Inspections", "description": "Submission, auto-approval and approver decisions"},
    {"name": "Health", "description": "Liveness and database connectivity"},
]

API_DESCRIPTION = """
## Inspection Decision Engine

Decides, at submission time, whether a filled inspection is auto-approved
or routed to its approvers, then drives approver decisions to a final
status under the workflow's consensus policy.

### Authentication

All `/api/v1` endpoints require a JWT: `Authorization: Bearer <token>`
with `sub` (user id) and `role` (ADMIN, APPROVER, INSPECTOR) claims.

### Error Codes

| HTTP | Code | Description |
|------|------|-------------|
| 400 | INVALID_SUBMISSION | Draft does not fit its workflow |
| 403 | NOT_AN_APPROVER | Caller holds no approver slot |
| 404 | WORKFLOW_NOT_FOUND / INSPECTION_NOT_FOUND | Unknown id |
| 409 | OUT_OF_TURN / ALREADY_DECIDED | Sequential order or repeat action |
| 503 | DECISION_CONFLICT | Concurrent writes; try again |
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(InspectionDecisionError)
async def decision_error_handler(request: Request, exc: InspectionDecisionError):
    """Map decision errors to their HTTP status with a stable error code."""
    status_code = ERROR_STATUS_CODES.get(exc.code, 400)
    if status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code, "details": exc.details},
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check(db: DB):
    """Health check endpoint with database validation."""
    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    # Check database connectivity
    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        health_status["checks"]["database"] = "connected"
    except Exception as e:
        logger.exception("Health check database probe failed")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status
