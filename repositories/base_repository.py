"""
Base Repository - Abstract base class for all repositories
Common data access operations shared by the member, import and audit repositories
"""

from abc import ABC, abstractmethod
from typing import TypeVar, Generic, List, Optional, Dict, Any, Type
from sqlalchemy.orm import Session, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import desc, asc
from dataclasses import dataclass
from enum import Enum
import logging

logger = logging.getLogger(__name__)

T = TypeVar('T')


class SortOrder(Enum):
    """Sort order options"""
    ASC = "asc"
    DESC = "desc"

    @classmethod
    def parse(cls, value: Optional[str], default: 'SortOrder' = None) -> 'SortOrder':
        """Lenient parse for query-string input"""
        if isinstance(value, cls):
            return value
        if value and value.lower() in ('asc', 'desc'):
            return cls(value.lower())
        return default or cls.DESC


@dataclass
class PaginationParams:
    """Parameters for pagination"""
    page: int = 1
    per_page: int = 20

    def __post_init__(self):
        self.page = max(int(self.page or 1), 1)
        self.per_page = min(max(int(self.per_page or 20), 1), 100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    @property
    def limit(self) -> int:
        return self.per_page


@dataclass
class PaginatedResult(Generic[T]):
    """Result of a paginated query"""
    items: List[T]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        return (self.total + self.per_page - 1) // self.per_page if self.per_page > 0 else 0

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.pages


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base repository with common CRUD operations.

    Write methods flush but never commit; services decide where the
    transaction boundary sits (see commit/rollback below).
    """

    def __init__(self, session: Session, model_class: Type[T]):
        """
        Args:
            session: SQLAlchemy database session
            model_class: The model class this repository manages
        """
        self.session = session
        self.model_class = model_class

    # CREATE

    def create(self, **kwargs) -> T:
        """
        Create and flush a new entity so its id is available.

        Raises:
            SQLAlchemyError: If the flush fails. The session is rolled back first.
        """
        try:
            entity = self.model_class(**kwargs)
            self.session.add(entity)
            self.session.flush()
            logger.debug(f"Created {self.model_class.__name__} with id {entity.id}")
            return entity
        except SQLAlchemyError as e:
            logger.error(f"Error creating {self.model_class.__name__}: {e}")
            self.session.rollback()
            raise

    # READ

    def get_by_id(self, entity_id: int) -> Optional[T]:
        try:
            return self.session.get(self.model_class, entity_id)
        except SQLAlchemyError as e:
            logger.error(f"Error getting {self.model_class.__name__} by id {entity_id}: {e}")
            return None

    def find_by(self, **filters) -> List[T]:
        """Find entities by exact field values"""
        try:
            return self._build_query(filters).all()
        except SQLAlchemyError as e:
            logger.error(f"Error finding {self.model_class.__name__} by filters: {e}")
            return []

    def find_one_by(self, **filters) -> Optional[T]:
        try:
            return self._build_query(filters).first()
        except SQLAlchemyError as e:
            logger.error(f"Error finding {self.model_class.__name__} by filters: {e}")
            return None

    def exists(self, **filters) -> bool:
        return self.find_one_by(**filters) is not None

    def count(self, **filters) -> int:
        try:
            return self._build_query(filters).count()
        except SQLAlchemyError as e:
            logger.error(f"Error counting {self.model_class.__name__}: {e}")
            return 0

    def get_paginated(self,
                      pagination: PaginationParams,
                      filters: Optional[Dict[str, Any]] = None,
                      order_by: Optional[str] = None,
                      order: SortOrder = SortOrder.ASC) -> PaginatedResult[T]:
        """Paginated listing with optional equality filters and ordering"""
        try:
            query = self._apply_order(self._build_query(filters), order_by, order)
            return self._paginate(query, pagination)
        except SQLAlchemyError as e:
            logger.error(f"Error getting paginated {self.model_class.__name__}: {e}")
            return PaginatedResult(items=[], total=0, page=pagination.page, per_page=pagination.per_page)

    # UPDATE

    def update(self, entity: T, **updates) -> T:
        """
        Set attributes on an entity and flush.

        Raises:
            SQLAlchemyError: If the flush fails. The session is rolled back first.
        """
        try:
            for field, value in updates.items():
                if hasattr(entity, field):
                    setattr(entity, field, value)
            self.session.flush()
            return entity
        except SQLAlchemyError as e:
            logger.error(f"Error updating {self.model_class.__name__}: {e}")
            self.session.rollback()
            raise

    def increment(self, entity_id: int, **deltas: int) -> int:
        """
        Atomically add deltas to integer columns in a single UPDATE.

        Returns:
            Number of rows matched (0 or 1)
        """
        values = {
            getattr(self.model_class, field): getattr(self.model_class, field) + delta
            for field, delta in deltas.items()
            if delta
        }
        if not values:
            return 0
        count = (
            self.session.query(self.model_class)
            .filter(self.model_class.id == entity_id)
            .update(values, synchronize_session='fetch')
        )
        self.session.flush()
        return count

    # Transaction management

    def commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error committing transaction: {e}")
            self.session.rollback()
            raise

    def rollback(self) -> None:
        self.session.rollback()

    # Helpers

    def _build_query(self, filters: Optional[Dict[str, Any]] = None) -> Query:
        """
        Build a query from equality filters. Lists become IN clauses and
        None becomes IS NULL.
        """
        query = self.session.query(self.model_class)

        for field, value in (filters or {}).items():
            column = getattr(self.model_class, field, None)
            if column is None:
                continue
            if isinstance(value, (list, tuple, set)):
                query = query.filter(column.in_(list(value)))
            elif value is None:
                query = query.filter(column.is_(None))
            else:
                query = query.filter(column == value)

        return query

    def _apply_order(self, query: Query, order_by: Optional[str], order: SortOrder) -> Query:
        if order_by:
            order_field = getattr(self.model_class, order_by, None)
            if order_field is not None:
                query = query.order_by(desc(order_field) if order == SortOrder.DESC else asc(order_field))
        return query

    def _paginate(self, query: Query, pagination: PaginationParams) -> PaginatedResult[T]:
        total = query.count()
        items = query.offset(pagination.offset).limit(pagination.limit).all()
        return PaginatedResult(items=items, total=total, page=pagination.page, per_page=pagination.per_page)

    @abstractmethod
    def search(self, query: str, fields: Optional[List[str]] = None) -> List[T]:
        """Search entities by text query"""
        pass
