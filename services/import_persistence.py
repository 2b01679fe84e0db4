"""
Persistence adapters - turn validated import records into create/update calls.

The import executor only talks to the PersistenceAdapter interface. The
SQLAlchemy implementation upserts every row inside its own savepoint, so a
failing row leaves the rest of the batch untouched; committing or rolling
back the batch is decided by the executor.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from services.common.result import Result
from services.import_constants import (
    ContractContactRole,
    EntityType,
    ErrorMessages,
    ImportErrorCode,
)
from services.import_schemas import (
    BuildingRecord,
    CompanyRecord,
    ContactRecord,
    ContractRecord,
    ImportRecord,
    LotRecord,
)
from utils.datetime_utils import local_today

logger = logging.getLogger(__name__)


class PersistError(Exception):
    """A single row could not be persisted; the batch goes on"""

    def __init__(self, message: str, code: str = ImportErrorCode.PERSIST_ERROR):
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass(frozen=True)
class UpsertOutcome:
    """Identity of the persisted entity"""
    id: int
    created: bool
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None


class PersistenceAdapter(ABC):
    """
    Boundary between the import and the datastore.

    upsert() must be idempotent for a given natural key: a second call with
    the same key updates the entity created by the first.
    """

    @abstractmethod
    def upsert(self, entity_type: EntityType, record: ImportRecord,
               natural_key: Tuple) -> Result[UpsertOutcome]:
        """Create or update one record; failures are returned, not raised"""

    def begin(self) -> None:
        """Called once before the first phase"""

    def commit(self) -> None:
        """Make every successful upsert of the run permanent"""

    def rollback(self) -> None:
        """Discard every upsert of the run"""


class SQLAlchemyPersistenceAdapter(PersistenceAdapter):
    """PersistenceAdapter backed by the SQLAlchemy repositories"""

    def __init__(self, session, company_repository, contact_repository, building_repository,
                 lot_repository, contract_repository, today: Optional[Callable] = None):
        """
        Args:
            session: SQLAlchemy session shared by the repositories
            today: Callable returning the date used for lease status
        """
        self.session = session
        self.company_repository = company_repository
        self.contact_repository = contact_repository
        self.building_repository = building_repository
        self.lot_repository = lot_repository
        self.contract_repository = contract_repository
        self.today = today or local_today

        self._handlers: Dict[EntityType, Callable[[Any], UpsertOutcome]] = {
            EntityType.COMPANIES: self._upsert_company,
            EntityType.CONTACTS: self._upsert_contact,
            EntityType.BUILDINGS: self._upsert_building,
            EntityType.LOTS: self._upsert_lot,
            EntityType.CONTRACTS: self._upsert_contract,
        }

    def upsert(self, entity_type: EntityType, record: ImportRecord,
               natural_key: Tuple) -> Result[UpsertOutcome]:
        handler = self._handlers[entity_type]
        savepoint = self.session.begin_nested()
        try:
            outcome = handler(record)
            savepoint.commit()
            return Result.success(outcome, metadata={'natural_key': natural_key})
        except PersistError as e:
            savepoint.rollback()
            return Result.failure(e.message, code=e.code)
        except IntegrityError as e:
            savepoint.rollback()
            logger.warning(f"Integrity error on {entity_type.value} row {record.row}: {e.orig}")
            return Result.failure(
                ErrorMessages.conflict(str(e.orig)), code=ImportErrorCode.CONFLICT
            )
        except SQLAlchemyError as e:
            savepoint.rollback()
            logger.error(f"Database error on {entity_type.value} row {record.row}: {e}")
            return Result.failure(str(e), code=ImportErrorCode.PERSIST_ERROR)

    def begin(self) -> None:
        # Start from a clean transaction so rollback() only discards this run
        if self.session.get_transaction() is not None:
            self.session.commit()

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    # Companies

    def _upsert_company(self, record: CompanyRecord) -> UpsertOutcome:
        company = None
        if record.vat_number:
            company = self.company_repository.find_by_vat_number(record.vat_number)
        if company is None:
            company = self.company_repository.find_by_name(record.name)

        if record.derived_from_contacts:
            # Named by a contact only: never overwrite an existing company
            if company is not None:
                return UpsertOutcome(id=company.id, created=False, name=company.name)
            company = self.company_repository.create(name=record.name)
            return UpsertOutcome(id=company.id, created=True, name=company.name)

        values = {
            'name': record.name,
            'legal_name': record.legal_name,
            'vat_number': record.vat_number,
            'street': record.street,
            'street_number': record.street_number,
            'postal_code': record.postal_code,
            'city': record.city,
            'country': record.country.value,
            'email': record.email,
            'phone': record.phone,
            'website': record.website,
        }
        return self._save(self.company_repository, company, values, name=record.name)

    # Contacts

    def _upsert_contact(self, record: ContactRecord) -> UpsertOutcome:
        if record.email:
            contact = self.contact_repository.find_by_email(record.email)
        else:
            contact = self.contact_repository.find_without_email(record.name, record.role.value)

        company_id = None
        if record.company_name:
            company = self.company_repository.find_by_name(record.company_name)
            if company is None:
                raise PersistError(
                    ErrorMessages.reference_not_found('Company', record.company_name),
                    code=ImportErrorCode.REFERENCE_NOT_FOUND
                )
            company_id = company.id

        values = {
            'name': record.name,
            'email': record.email,
            'phone': record.phone,
            'role': record.role.value,
            'address': record.address,
            'speciality': record.speciality.value if record.speciality else None,
            'notes': record.notes,
            'company_id': company_id,
        }
        return self._save(self.contact_repository, contact, values, name=record.name,
                          email=record.email, role=record.role.value)

    # Buildings

    def _upsert_building(self, record: BuildingRecord) -> UpsertOutcome:
        building = self.building_repository.find_by_name(record.name)
        values = {
            'name': record.name,
            'address': record.address,
            'city': record.city,
            'postal_code': record.postal_code,
            'country': record.country.value,
            'description': record.description,
        }
        return self._save(self.building_repository, building, values, name=record.name)

    # Lots

    def _upsert_lot(self, record: LotRecord) -> UpsertOutcome:
        building_id = None
        if record.building_name:
            building = self.building_repository.find_by_name(record.building_name)
            if building is None:
                raise PersistError(
                    ErrorMessages.reference_not_found('Building', record.building_name),
                    code=ImportErrorCode.REFERENCE_NOT_FOUND
                )
            building_id = building.id

        lot = self.lot_repository.find_by_reference_and_building(record.reference, building_id)
        values = {
            'reference': record.reference,
            'building_id': building_id,
            'category': record.category.value,
            'floor': record.floor,
            'street': record.street,
            'city': record.city,
            'postal_code': record.postal_code,
            'country': record.country.value,
            'description': record.description,
        }
        return self._save(self.lot_repository, lot, values, name=record.reference)

    # Contracts

    def _upsert_contract(self, record: ContractRecord) -> UpsertOutcome:
        lots = self.lot_repository.find_by_reference(record.lot_reference)
        if not lots:
            raise PersistError(
                ErrorMessages.reference_not_found('Lot', record.lot_reference),
                code=ImportErrorCode.REFERENCE_NOT_FOUND
            )
        if len(lots) > 1:
            raise PersistError(
                ErrorMessages.reference_ambiguous('Lot', record.lot_reference),
                code=ImportErrorCode.REFERENCE_AMBIGUOUS
            )
        lot = lots[0]

        links = self._contract_links(record)
        contract = self.contract_repository.find_by_natural_key(lot.id, record.title, record.start_date)
        values = {
            'lot_id': lot.id,
            'title': record.title,
            'start_date': record.start_date,
            'end_date': record.end_date,
            'duration_months': record.duration_months,
            'rent_amount': self._amount(record.rent_amount),
            'charges_amount': self._amount(record.charges_amount),
            'guarantee_amount': self._amount(record.guarantee_amount),
            'contract_type': record.contract_type.value,
            'status': record.status_on(self.today()).value,
            'comments': record.comments,
        }
        outcome = self._save(self.contract_repository, contract, values, name=record.title)
        contract = self.contract_repository.get_by_id(outcome.id)
        self.contract_repository.replace_contacts(contract, links)
        return outcome

    def _contract_links(self, record: ContractRecord) -> List[Dict[str, Any]]:
        """Resolve tenant and guarantor emails; the first tenant is the primary one"""
        links = []
        seen = set()
        groups = (
            (record.tenant_emails, ContractContactRole.LOCATAIRE, 'Tenant'),
            (record.guarantor_emails, ContractContactRole.GARANT, 'Guarantor'),
        )
        for emails, role, label in groups:
            for email in emails:
                contact = self.contact_repository.find_by_email(email)
                if contact is None:
                    raise PersistError(
                        ErrorMessages.reference_not_found(label, email),
                        code=ImportErrorCode.REFERENCE_NOT_FOUND
                    )
                if (contact.id, role) in seen:
                    continue
                seen.add((contact.id, role))
                is_primary = role == ContractContactRole.LOCATAIRE and not any(
                    link['role'] == ContractContactRole.LOCATAIRE.value for link in links
                )
                links.append({'contact_id': contact.id, 'role': role.value, 'is_primary': is_primary})
        return links

    # Helpers

    @staticmethod
    def _save(repository, existing, values: Dict[str, Any], **identity) -> UpsertOutcome:
        entity, created = repository.upsert(existing, **values)
        return UpsertOutcome(id=entity.id, created=created, **identity)

    @staticmethod
    def _amount(value: Optional[Decimal]) -> Optional[Decimal]:
        return None if value is None else Decimal(value).quantize(Decimal('0.01'))
