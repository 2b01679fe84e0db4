"""
LotRepository - Data access layer for Lot entities
A lot reference is unique within its building; independent lots have no building.
"""

from typing import List, Optional
from repositories.base_repository import BaseRepository
from seido_database import Lot
import logging

logger = logging.getLogger(__name__)


class LotRepository(BaseRepository[Lot]):
    """Repository for Lot data access"""

    def __init__(self, session):
        super().__init__(session, Lot)

    def find_by_reference_and_building(self, reference: str, building_id: Optional[int]) -> Optional[Lot]:
        """
        Find a lot by reference inside a building.

        Args:
            reference: Lot reference, matched ignoring case
            building_id: Building id, None for independent lots
        """
        return self.first_insensitive('reference', reference, building_id=building_id)

    def find_by_reference(self, reference: str) -> List[Lot]:
        """All lots carrying this reference, across buildings"""
        return self.find_by_insensitive('reference', reference)
