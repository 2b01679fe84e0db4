"""
BuildingRepository - Data access layer for Building entities
"""

from typing import Optional
from repositories.base_repository import BaseRepository
from seido_database import Building
import logging

logger = logging.getLogger(__name__)


class BuildingRepository(BaseRepository[Building]):
    """Repository for Building data access"""

    def __init__(self, session):
        super().__init__(session, Building)

    def find_by_name(self, name: str) -> Optional[Building]:
        """Buildings are referenced by name in import files; match ignores case"""
        return self.first_insensitive('name', name)
