"""
ContactInvitationRepository - Data access layer for contact invitation tokens
"""

from typing import Optional
from repositories.base_repository import BaseRepository
from seido_database import ContactInvitation
from utils.datetime_utils import utc_now, ensure_utc
import logging

logger = logging.getLogger(__name__)


class ContactInvitationRepository(BaseRepository[ContactInvitation]):
    """Repository for ContactInvitation data access"""

    def __init__(self, session):
        super().__init__(session, ContactInvitation)

    def find_pending_for_contact(self, contact_id: int) -> Optional[ContactInvitation]:
        """Unused, unexpired invitation of a contact, if any"""
        now = utc_now()
        for invitation in self.find_by(contact_id=contact_id, used=False):
            if ensure_utc(invitation.expires_at) > now:
                return invitation
        return None
