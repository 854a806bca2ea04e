"""
Base Repository - Abstract base class for all repositories
Common database operations with optional tenant scoping
"""

from abc import ABC
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


@dataclass
class PaginationParams:
    """Parameters for pagination"""
    page: int = 1
    per_page: int = 20

    def __post_init__(self):
        self.page = max(1, int(self.page or 1))
        self.per_page = max(1, int(self.per_page or 1))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


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
    def has_next(self) -> bool:
        return self.page < self.pages


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base repository with common CRUD operations.

    Writes flush without committing so a service can group several writes in
    one transaction. Write errors are logged, rolled back and re-raised. Read
    errors are logged and produce an empty answer.
    """

    def __init__(self, session: Session, model_class: Type[T]):
        """
        Args:
            session: SQLAlchemy database session
            model_class: The model class this repository manages
        """
        self.session = session
        self.model_class = model_class

    @property
    def is_tenant_scoped(self) -> bool:
        return hasattr(self.model_class, 'tenant_id')

    # CREATE Operations

    def create(self, **kwargs) -> T:
        """
        Create a new entity and flush it to obtain its id.

        Raises:
            SQLAlchemyError: If database operation fails
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

    # READ Operations

    def get_by_id(self, entity_id: int) -> Optional[T]:
        try:
            return self.session.get(self.model_class, entity_id)
        except SQLAlchemyError as e:
            logger.error(f"Error getting {self.model_class.__name__} by id {entity_id}: {e}")
            return None

    def get_for_tenant(self, tenant_id: str, entity_id: int) -> Optional[T]:
        """
        Get an entity by id only if it belongs to the tenant.

        Args:
            tenant_id: Owning tenant
            entity_id: Entity ID

        Returns:
            Entity instance or None if missing or owned by another tenant
        """
        entity = self.get_by_id(entity_id)
        if entity is None:
            return None
        if self.is_tenant_scoped and entity.tenant_id != tenant_id:
            return None
        return entity

    def find_by(self, **filters) -> List[T]:
        """Find entities whose columns equal the given values"""
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
        try:
            return self._build_query(filters).first() is not None
        except SQLAlchemyError as e:
            logger.error(f"Error checking existence of {self.model_class.__name__}: {e}")
            return False

    def count(self, **filters) -> int:
        try:
            return self._build_query(filters).count()
        except SQLAlchemyError as e:
            logger.error(f"Error counting {self.model_class.__name__}: {e}")
            return 0

    def paginate(self,
                 query: Query,
                 pagination: PaginationParams,
                 order_by: Optional[str] = None,
                 order: SortOrder = SortOrder.ASC) -> PaginatedResult[T]:
        """
        Page through an already-filtered query.

        Args:
            query: Filtered query for this repository's model
            pagination: Pagination parameters
            order_by: Field name to order by
            order: Sort order

        Returns:
            PaginatedResult with items and metadata
        """
        try:
            if order_by:
                order_field = getattr(self.model_class, order_by, None)
                if order_field is not None:
                    query = query.order_by(
                        desc(order_field) if order == SortOrder.DESC else asc(order_field),
                        desc(self.model_class.id) if order == SortOrder.DESC else asc(self.model_class.id)
                    )
            total = query.count()
            items = query.offset(pagination.offset).limit(pagination.per_page).all()
            return PaginatedResult(items=items, total=total, page=pagination.page, per_page=pagination.per_page)
        except SQLAlchemyError as e:
            logger.error(f"Error getting paginated {self.model_class.__name__}: {e}")
            return PaginatedResult(items=[], total=0, page=pagination.page, per_page=pagination.per_page)

    # UPDATE Operations

    def update(self, entity: T, **updates) -> T:
        """
        Update an entity with new values.

        Raises:
            SQLAlchemyError: If database operation fails, including a stale
                version on versioned models
        """
        try:
            for field, value in updates.items():
                if hasattr(entity, field):
                    setattr(entity, field, value)
            self.session.flush()
            logger.debug(f"Updated {self.model_class.__name__} with id {entity.id}")
            return entity
        except SQLAlchemyError as e:
            logger.error(f"Error updating {self.model_class.__name__}: {e}")
            self.session.rollback()
            raise

    # DELETE Operations

    def delete(self, entity: T) -> None:
        """
        Delete an entity, cascading to its owned children.

        Raises:
            SQLAlchemyError: If database operation fails
        """
        try:
            self.session.delete(entity)
            self.session.flush()
            logger.debug(f"Deleted {self.model_class.__name__} with id {entity.id}")
        except SQLAlchemyError as e:
            logger.error(f"Error deleting {self.model_class.__name__}: {e}")
            self.session.rollback()
            raise

    # Transaction Management

    def commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error committing transaction: {e}")
            self.session.rollback()
            raise

    def rollback(self) -> None:
        self.session.rollback()

    # Helper Methods

    def _build_query(self, filters: Optional[Dict[str, Any]] = None) -> Query:
        """
        Build a query from column filters.

        Lists become IN clauses and None becomes IS NULL.
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
