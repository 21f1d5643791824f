"""
Repository Layer - Data Access Abstraction
Implements the Repository Pattern for database isolation
"""

from .base_repository import (
    BaseRepository,
    PaginationParams,
    PaginatedResult,
    SortOrder
)
from .user_repository import UserRepository
from .import_operation_repository import ImportOperationRepository
from .activity_repository import ActivityRepository

__all__ = [
    'BaseRepository',
    'PaginationParams',
    'PaginatedResult',
    'SortOrder',
    'UserRepository',
    'ImportOperationRepository',
    'ActivityRepository'
]
