"""
CompanyRepository - Data access layer for Company entities
"""

from typing import Optional
from repositories.base_repository import BaseRepository
from seido_database import Company
import logging

logger = logging.getLogger(__name__)


class CompanyRepository(BaseRepository[Company]):
    """Repository for Company data access"""

    def __init__(self, session):
        super().__init__(session, Company)

    def find_by_vat_number(self, vat_number: str) -> Optional[Company]:
        return self.find_one_by(vat_number=vat_number)

    def find_by_name(self, name: str) -> Optional[Company]:
        """Case-insensitive lookup by display name"""
        return self.first_insensitive('name', name)
