"""
Security guards for role-based and ownership-based access control.

Provides dependencies for protecting endpoints.
"""

from typing import List, Optional
from fastapi import Depends, HTTPException, status
from fleet_backend.app.models.enums import UserRole
from fleet_backend.app.core.dependencies import get_current_user


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.get("/location/live/{vehicle_id}")
        async def get_live(current_user: dict = Depends(require_role([UserRole.FLEET_OWNER]))):
            ...

    Args:
        allowed_roles: List of UserRole enums that are allowed to access the endpoint

    Returns:
        FastAPI dependency function that validates user role

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        user_role_str = current_user.get("role")

        if not user_role_str:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Role information missing from token"
            )

        # Convert string role to UserRole enum
        try:
            user_role = UserRole(user_role_str)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        if user_role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker


class OwnershipGuard:
    """
    Class-based ownership guard for validating multi-tenant access.

    Usage:
        ownership_guard = OwnershipGuard()
        vehicle = await tracking.directory.get_vehicle(vehicle_id)
        ownership_guard.enforce(vehicle.owner_id, current_user, "vehicle")
    """

    def enforce(
        self,
        resource_owner_id: int,
        current_user: dict,
        resource_name: str = "resource"
    ):
        """
        Enforce ownership validation, raise 403 if access denied.

        Raises:
            HTTPException 403 if ownership check fails
        """
        role = current_user.get("role")
        if role == UserRole.ADMIN.value:
            return
        if role == UserRole.FLEET_OWNER.value and current_user.get("user_id") == resource_owner_id:
            return

        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Access denied. You do not have permission to access this {resource_name}."
        )

    def filter_by_ownership(self, current_user: dict) -> Optional[int]:
        """
        Get the owner_id to filter database queries by.

        For admins: Returns None (no filtering needed)
        For Fleet Owners: Returns their user_id
        """
        if current_user.get("role") == UserRole.ADMIN.value:
            return None
        return current_user.get("user_id")
