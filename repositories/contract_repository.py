"""
ContractRepository - Data access layer for Contract entities and their contact links
"""

from datetime import date
from typing import List, Optional
from repositories.base_repository import BaseRepository
from seido_database import Contract, ContractContact
from sqlalchemy.exc import SQLAlchemyError
import logging

logger = logging.getLogger(__name__)


class ContractRepository(BaseRepository[Contract]):
    """Repository for Contract data access"""

    def __init__(self, session):
        super().__init__(session, Contract)

    def find_by_natural_key(self, lot_id: int, title: str, start_date: date) -> Optional[Contract]:
        return self.first_insensitive('title', title, lot_id=lot_id, start_date=start_date)

    def replace_contacts(self, contract: Contract, links: List[dict]) -> List[ContractContact]:
        """
        Replace the tenants and guarantors linked to a contract.

        Args:
            contract: Contract entity
            links: dicts with contact_id, role and is_primary

        Raises:
            SQLAlchemyError: If database operation fails
        """
        try:
            contract.contact_links.clear()
            self.session.flush()
            created = []
            for link in links:
                contract_contact = ContractContact(contract_id=contract.id, **link)
                contract.contact_links.append(contract_contact)
                created.append(contract_contact)
            self.session.flush()
            logger.debug(f"Linked {len(created)} contacts to contract {contract.id}")
            return created
        except SQLAlchemyError as e:
            logger.error(f"Error linking contacts to contract {contract.id}: {e}")
            raise
