"""
ContactRepository - Data access layer for Contact entities
Contacts are matched by email when they have one, otherwise by name and role.
"""

from typing import Optional
from repositories.base_repository import BaseRepository
from seido_database import Contact
import logging

logger = logging.getLogger(__name__)


class ContactRepository(BaseRepository[Contact]):
    """Repository for Contact data access"""

    def __init__(self, session):
        super().__init__(session, Contact)

    def find_by_email(self, email: Optional[str]) -> Optional[Contact]:
        """Email match ignores case; None when the email is blank"""
        return self.first_insensitive('email', email)

    def find_without_email(self, name: str, role: str) -> Optional[Contact]:
        """Contacts without email are matched on (name, role)"""
        return self.first_insensitive('name', name, role=role, email=None)
