from typing import Annotated, Optional
import uuid
import logging

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ordercore.database import get_db
from ordercore.core.permissions import Actor, PermissionChecker, ROLE_PERMISSIONS


logger = logging.getLogger(__name__)


async def get_current_actor(
    x_actor_id: Annotated[Optional[str], Header()] = None,
    x_actor_role: Annotated[Optional[str], Header()] = None,
) -> Actor:
    """
    Dependency to get the actor performing the request.

    Authentication happens in the gateway; it forwards the verified identity
    as ``X-Actor-Id`` and ``X-Actor-Role``.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Missing or invalid actor headers",
    )

    if not x_actor_id or not x_actor_role:
        raise credentials_exception

    try:
        actor_id = uuid.UUID(x_actor_id)
    except ValueError:
        logger.warning(f"Invalid actor id header: {x_actor_id}")
        raise credentials_exception

    role = x_actor_role.strip().lower()
    if role not in ROLE_PERMISSIONS:
        logger.warning(f"Unknown actor role '{x_actor_role}' for {actor_id}")
        raise credentials_exception

    return Actor(id=actor_id, role=role)


async def get_permission_checker(
    actor: Annotated[Actor, Depends(get_current_actor)],
) -> PermissionChecker:
    """
    Get a PermissionChecker instance for the current actor.
    """
    return PermissionChecker(actor)


def require_permissions(*required_permissions: str):
    """
    Dependency factory to require specific permissions.

    Usage:
        @router.post("/", dependencies=[Depends(require_permissions("orders:create"))])
        async def create_order():
            ...
    """
    async def permission_dependency(
        permission_checker: Annotated[PermissionChecker, Depends(get_permission_checker)]
    ):
        for permission in required_permissions:
            if not permission_checker.has_permission(permission):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Permission denied. Required: {permission}"
                )
        return True

    return permission_dependency


# Type aliases for cleaner endpoint signatures
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
DB = Annotated[AsyncSession, Depends(get_db)]
