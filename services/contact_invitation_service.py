"""
ContactInvitationService - creates invitation tokens for imported contacts.

Delivering the invitation email is handled by the notification layer; this
service only issues (or reuses) the token.
"""

import logging
import secrets
from typing import Any, Dict, Iterable, List

from sqlalchemy.exc import SQLAlchemyError

from logging_config import ImportAuditLogger, import_audit_logger
from repositories.contact_invitation_repository import ContactInvitationRepository
from repositories.contact_repository import ContactRepository
from services.common.result import Result
from services.import_types import CreatedContact
from utils.datetime_utils import format_utc_iso, utc_in_days

logger = logging.getLogger(__name__)


class ContactInvitationService:
    """Issues invitation tokens to contacts created by an import"""

    def __init__(self,
                 invitation_repository: ContactInvitationRepository,
                 contact_repository: ContactRepository,
                 expiry_days: int = 7,
                 audit_logger: ImportAuditLogger = None):
        self.invitation_repository = invitation_repository
        self.contact_repository = contact_repository
        self.expiry_days = expiry_days
        self.audit_logger = audit_logger or import_audit_logger

    def invite(self, contact: CreatedContact) -> Result[Dict[str, Any]]:
        """
        Create an invitation for one contact.

        Args:
            contact: Contact returned by the import

        Returns:
            Result with contact_id, email, token and expires_at
        """
        if not contact.is_invitable:
            return Result.failure(f"Contact {contact.name} has no email", code="NO_EMAIL")

        db_contact = self.contact_repository.get_by_id(contact.id)
        if db_contact is None:
            return Result.failure(f"Contact {contact.id} not found", code="CONTACT_NOT_FOUND")

        existing = self.invitation_repository.find_pending_for_contact(db_contact.id)
        if existing is not None:
            logger.info(f"Reusing pending invitation for contact {db_contact.id}")
            return Result.success(self._to_dict(existing), metadata={'reused': True})

        try:
            invitation = self.invitation_repository.create(
                contact_id=db_contact.id,
                email=db_contact.email or contact.email,
                token=secrets.token_urlsafe(32),
                expires_at=utc_in_days(self.expiry_days),
            )
            self.invitation_repository.commit()
        except SQLAlchemyError as e:
            self.invitation_repository.rollback()
            self.audit_logger.log_invitation(contact.id, contact.email, False, str(e))
            return Result.failure(f"Could not create invitation: {e}", code="INVITATION_ERROR")

        self.audit_logger.log_invitation(contact.id, invitation.email, True)
        return Result.success(self._to_dict(invitation), metadata={'reused': False})

    def invite_many(self, contacts: Iterable[CreatedContact]) -> Dict[str, List[Dict[str, Any]]]:
        """Invite each contact; returns the sent and failed lists"""
        sent, failed = [], []
        for contact in contacts:
            result = self.invite(contact)
            if result.is_success:
                sent.append(result.data)
            else:
                failed.append({'contact_id': contact.id, 'email': contact.email,
                               'error': result.error, 'code': result.error_code})
        return {'sent': sent, 'failed': failed}

    @staticmethod
    def _to_dict(invitation) -> Dict[str, Any]:
        return {
            'contact_id': invitation.contact_id,
            'email': invitation.email,
            'token': invitation.token,
            'expires_at': format_utc_iso(invitation.expires_at),
        }
