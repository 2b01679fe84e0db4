"""
Repository Layer - Data Access Abstraction
Implements the Repository Pattern for database isolation
"""

from .base_repository import BaseRepository, SortOrder
from .building_repository import BuildingRepository
from .company_repository import CompanyRepository
from .contact_invitation_repository import ContactInvitationRepository
from .contact_repository import ContactRepository
from .contract_repository import ContractRepository
from .import_job_repository import ImportJobRepository
from .lot_repository import LotRepository

__all__ = [
    'BaseRepository',
    'SortOrder',
    'BuildingRepository',
    'CompanyRepository',
    'ContactInvitationRepository',
    'ContactRepository',
    'ContractRepository',
    'ImportJobRepository',
    'LotRepository',
]
