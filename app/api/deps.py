from typing import Annotated
import uuid
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.core.security import verify_access_token
from app.core.permissions import Capability, PermissionChecker, parse_role
from app.services.inspection_events import InspectionEventSink, LoggingEventSink


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer()

_default_event_sink = LoggingEventSink()


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> PermissionChecker:
    """
    Dependency to get the current authenticated actor.

    The identity and role come from the JWT claims; user records live in
    the identity service, not here.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    claims = verify_access_token(credentials.credentials)
    if claims is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise credentials_exception

    try:
        user_id = uuid.UUID(claims["sub"])
        role = parse_role(claims["role"])
    except ValueError:
        logger.warning(f"Invalid subject or role in token: {claims.get('sub')} / {claims.get('role')}")
        raise credentials_exception

    return PermissionChecker(user_id, role)


def require_capability(*required: Capability):
    """
    Dependency factory to require specific capabilities.

    Usage:
        @router.post("/", dependencies=[Depends(require_capability(Capability.MANAGE_WORKFLOWS))])
        async def create_workflow():
            ...
    """
    async def capability_dependency(
        actor: Annotated[PermissionChecker, Depends(get_current_actor)]
    ):
        for capability in required:
            actor.require(capability)
        return True

    return capability_dependency


def get_event_sink() -> InspectionEventSink:
    """Event sink for decision events. Overridden in tests."""
    return _default_event_sink


# Type aliases for cleaner endpoint signatures
DB = Annotated[AsyncSession, Depends(get_db)]
Actor = Annotated[PermissionChecker, Depends(get_current_actor)]
EventSink = Annotated[InspectionEventSink, Depends(get_event_sink)]
