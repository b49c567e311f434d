"""
User roles enumeration.

Defines the role types for the fleet management system.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Supreme user with system-level access
        FLEET_OWNER: Owns and manages vehicles and drivers
        DRIVER: Drives vehicles and reports positions (default role)
    """
    ADMIN = "ADMIN"
    FLEET_OWNER = "FLEET_OWNER"
    DRIVER = "DRIVER"
