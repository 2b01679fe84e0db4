"""
Base Repository - shared data access for the import entities.

Import rows are matched against existing data by natural key (a name, a
reference, an email), so lookups here are case-insensitive and writes are
expressed as upserts. Repositories flush but never commit or roll back on
their own: the import wraps every row in a savepoint and settles the batch
at the end. Write errors are logged and re-raised to the caller.
"""

from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Tuple, Type, TypeVar
import logging

from sqlalchemy import asc, desc, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

logger = logging.getLogger(__name__)

T = TypeVar('T')


class SortOrder(Enum):
    ASC = "asc"
    DESC = "desc"


class BaseRepository(Generic[T]):
    """Data access for one model class, bound to the request's session"""

    def __init__(self, session: Session, model_class: Type[T]):
        self.session = session
        self.model_class = model_class

    @property
    def _name(self) -> str:
        return self.model_class.__name__

    # Writes

    def create(self, **values) -> T:
        """
        Add a new entity and flush so its id is available to later rows.

        Raises:
            SQLAlchemyError: If the flush fails (constraint, lock, ...)
        """
        entity = self.model_class(**values)
        try:
            self.session.add(entity)
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error creating {self._name}: {e}")
            raise
        logger.debug(f"Created {self._name} {entity.id}")
        return entity

    def update(self, entity: T, **values) -> T:
        """Set the given columns (unknown keys are ignored) and flush"""
        for field, value in values.items():
            if hasattr(entity, field):
                setattr(entity, field, value)
        try:
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error updating {self._name} {getattr(entity, 'id', None)}: {e}")
            raise
        return entity

    def upsert(self, existing: Optional[T], **values) -> Tuple[T, bool]:
        """
        Update `existing` with `values`, or create a new entity when it is None.

        Returns:
            (entity, created)
        """
        if existing is None:
            return self.create(**values), True
        return self.update(existing, **values), False

    # Reads

    def get_by_id(self, entity_id: int) -> Optional[T]:
        try:
            return self.session.get(self.model_class, entity_id)
        except SQLAlchemyError as e:
            logger.error(f"Error loading {self._name} {entity_id}: {e}")
            return None

    def get_all(self, order_by: str = 'id', order: SortOrder = SortOrder.ASC,
                limit: Optional[int] = None) -> List[T]:
        column = getattr(self.model_class, order_by)
        query = self.session.query(self.model_class).order_by(
            desc(column) if order == SortOrder.DESC else asc(column)
        )
        if limit:
            query = query.limit(limit)
        return query.all()

    def find_by(self, **filters) -> List[T]:
        """Exact match on every filter; a list matches any of its values, None matches NULL"""
        return self._query(filters).all()

    def find_one_by(self, **filters) -> Optional[T]:
        return self._query(filters).first()

    def find_by_insensitive(self, field: str, value: str, **filters) -> List[T]:
        """Entities whose `field` equals `value` ignoring case and surrounding spaces, oldest first"""
        column = getattr(self.model_class, field)
        query = self._query(filters).filter(func.lower(func.trim(column)) == value.strip().lower())
        return query.order_by(asc(self.model_class.id)).all()

    def first_insensitive(self, field: str, value: Optional[str], **filters) -> Optional[T]:
        """Natural key lookup: the oldest entity matching `value`, or None"""
        if not value:
            return None
        matches = self.find_by_insensitive(field, value, **filters)
        return matches[0] if matches else None

    # Transaction

    def commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error committing {self._name} changes: {e}")
            self.session.rollback()
            raise

    def rollback(self) -> None:
        self.session.rollback()

    def _query(self, filters: Optional[Dict[str, Any]] = None) -> Query:
        query = self.session.query(self.model_class)
        for field, value in (filters or {}).items():
            column = getattr(self.model_class, field)
            if isinstance(value, (list, tuple, set)):
                query = query.filter(column.in_(list(value)))
            elif value is None:
                query = query.filter(column.is_(None))
            else:
                query = query.filter(column == value)
        return query
