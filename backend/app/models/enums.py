"""
User roles enumeration.

Defines the role types for the troop treasury system.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.
    
    Roles:
        ADMIN: Full access, including troop settings and parent links
        FINANCIER: All financial mutations
        LEADER: Campout and roster mutations, no settings
        PARENT: Acts on behalf of linked scouts only
        SCOUT: Read-only plus payments from own IBA
    """
    ADMIN = "ADMIN"
    FINANCIER = "FINANCIER"
    LEADER = "LEADER"
    PARENT = "PARENT"
    SCOUT = "SCOUT"
