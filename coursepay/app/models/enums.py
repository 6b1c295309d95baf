"""
User roles enumeration.

Defines the role types for the course payment backend.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Runs payroll and settlement operations
        INSTRUCTOR: Owns courses and receives earnings
        STUDENT: Buys courses (default role)
    """
    ADMIN = "ADMIN"
    INSTRUCTOR = "INSTRUCTOR"
    STUDENT = "STUDENT"
