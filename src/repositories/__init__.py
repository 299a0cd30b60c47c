"""Repository layer for data persistence.

Provides repository classes for persisting domain data to the database.
Repositories encapsulate data access logic and satisfy the identity
store contract consumed by the recognition core.
"""

from src.repositories.profile_repo import ProfileRepository

__all__ = [
    "ProfileRepository",
]
