"""
Import Types - immutable value objects shared by the parser, validator,
import executor and wizard.
"""

import math
import os
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from services.import_constants import (
    EntityType,
    HEADER_ROW_OFFSET,
    IMPORT_PHASES,
    ImportErrorCode,
    SHEET_NAMES,
    SHEET_ORDER,
)


class WizardStep(str, Enum):
    """Steps of the import wizard"""
    UPLOAD = "upload"
    PREVIEW = "preview"
    CONFIRM = "confirm"
    PROGRESS = "progress"
    RESULT = "result"
    INVITATION = "invitation"


class ErrorMode(str, Enum):
    """What happens to persisted rows when a run has failures"""
    ALL_OR_NOTHING = "all_or_nothing"
    BEST_EFFORT = "best_effort"

    @classmethod
    def from_value(cls, value: Optional[str]) -> 'ErrorMode':
        if isinstance(value, cls):
            return value
        if not value:
            return cls.ALL_OR_NOTHING
        return cls(str(value).strip().lower())


@dataclass(frozen=True)
class UploadedFile:
    """A file selected for import"""
    filename: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return os.path.splitext(self.filename or "")[1].lower()


def _is_empty_cell(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return isinstance(value, float) and math.isnan(value)


@dataclass(frozen=True)
class ParsedSheet:
    """
    One sheet of the uploaded file.

    Rows keep their spreadsheet order: the row at index i sits on
    spreadsheet line i + 2 (header on line 1).
    """
    entity: EntityType
    headers: Tuple[str, ...] = ()
    rows: Tuple[Dict[str, Any], ...] = ()
    source_name: Optional[str] = None

    @property
    def sheet(self) -> str:
        return SHEET_NAMES[self.entity]

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def data_row_count(self) -> int:
        """Rows holding at least one value; blank lines inside a sheet are skipped on import"""
        return sum(1 for row in self.rows if not all(_is_empty_cell(value) for value in row.values()))

    @staticmethod
    def line_number(index: int) -> int:
        return index + HEADER_ROW_OFFSET

    def iter_rows(self) -> Iterator[Tuple[int, Dict[str, Any]]]:
        """Yield (line number, row) pairs"""
        for index, row in enumerate(self.rows):
            yield self.line_number(index), row


@dataclass(frozen=True)
class ParseResult:
    """Parsed sheets of one upload, by entity type"""
    buildings: ParsedSheet
    lots: ParsedSheet
    contacts: ParsedSheet
    contracts: ParsedSheet
    companies: ParsedSheet = field(default_factory=lambda: ParsedSheet(EntityType.COMPANIES))
    filename: Optional[str] = None

    def get(self, entity: EntityType) -> ParsedSheet:
        return getattr(self, entity.value)

    def sheets(self) -> List[ParsedSheet]:
        return [self.get(entity) for entity in SHEET_ORDER]


@dataclass(frozen=True)
class ValidationError:
    """A problem found on one spreadsheet row"""
    sheet: str
    row: int
    message: str
    field: Optional[str] = None
    value: Any = None
    code: str = ImportErrorCode.UNKNOWN

    def to_dict(self) -> Dict[str, Any]:
        value = self.value
        if value is not None and not isinstance(value, (str, int, float, bool)):
            value = str(value)
        return {
            'sheet': self.sheet,
            'row': self.row,
            'message': self.message,
            'field': self.field,
            'value': value,
            'code': self.code,
        }


@dataclass(frozen=True)
class ImportStats:
    """Row counts per sheet, computed from the parsed file"""
    buildings: int = 0
    lots: int = 0
    contacts: int = 0
    contracts: int = 0
    companies: int = 0

    @property
    def total(self) -> int:
        return self.buildings + self.lots + self.contacts + self.contracts + self.companies

    @classmethod
    def from_parse_result(cls, parse_result: ParseResult) -> 'ImportStats':
        return cls(
            buildings=parse_result.buildings.data_row_count,
            lots=parse_result.lots.data_row_count,
            contacts=parse_result.contacts.data_row_count,
            contracts=parse_result.contracts.data_row_count,
            companies=parse_result.companies.data_row_count,
        )

    def to_dict(self) -> Dict[str, int]:
        data = asdict(self)
        data['total'] = self.total
        return data


@dataclass(frozen=True)
class ImportData:
    """Typed records that passed the schema checks, per entity type"""
    companies: Tuple[Any, ...] = ()
    contacts: Tuple[Any, ...] = ()
    buildings: Tuple[Any, ...] = ()
    lots: Tuple[Any, ...] = ()
    contracts: Tuple[Any, ...] = ()

    def records_for(self, entity: EntityType) -> Tuple[Any, ...]:
        return getattr(self, entity.value)

    @property
    def total(self) -> int:
        return sum(len(self.records_for(entity)) for entity in IMPORT_PHASES)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of one validation pass"""
    errors: Tuple[ValidationError, ...] = ()
    data: ImportData = field(default_factory=ImportData)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass
class EntityCounts:
    """Running created/updated/failed tally for one phase"""
    created: int = 0
    updated: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {'created': self.created, 'updated': self.updated, 'failed': self.failed}


@dataclass(frozen=True)
class CreatedContact:
    """A contact created by an import, candidate for an invitation"""
    id: int
    name: str
    email: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_invitable(self) -> bool:
        return bool(self.email and self.email.strip())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ImportProgress:
    """Phase level progress of a running import"""
    phase: Optional[EntityType]
    phase_index: int
    total_phases: int
    phase_name: str
    total_progress: int
    is_complete: bool = False

    @classmethod
    def not_started(cls) -> 'ImportProgress':
        return cls(phase=None, phase_index=-1, total_phases=len(IMPORT_PHASES),
                   phase_name="", total_progress=0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'phase': self.phase.value if self.phase else None,
            'phase_index': self.phase_index,
            'total_phases': self.total_phases,
            'phase_name': self.phase_name,
            'total_progress': self.total_progress,
            'is_complete': self.is_complete,
        }


@dataclass(frozen=True)
class ImportResult:
    """Terminal artifact of one import run"""
    success: bool
    summary: Mapping[str, Mapping[str, int]]
    errors: Tuple[ValidationError, ...] = ()
    created_contacts: Tuple[CreatedContact, ...] = ()
    duration_ms: int = 0
    error_mode: ErrorMode = ErrorMode.ALL_OR_NOTHING
    rolled_back: bool = False
    fatal_error: Optional[str] = None
    job_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'summary': {name: dict(counts) for name, counts in self.summary.items()},
            'errors': [error.to_dict() for error in self.errors],
            'created_contacts': [contact.to_dict() for contact in self.created_contacts],
            'duration_ms': self.duration_ms,
            'error_mode': self.error_mode.value,
            'rolled_back': self.rolled_back,
            'fatal_error': self.fatal_error,
            'job_id': self.job_id,
        }


@dataclass(frozen=True)
class InvitationProgress:
    total: int = 0
    sent: int = 0
    failed: int = 0
    is_processing: bool = False
    current_contact: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class WizardState:
    """Snapshot of the import wizard; replaced on every transition"""
    step: WizardStep = WizardStep.UPLOAD
    file: Optional[UploadedFile] = None
    is_loading: bool = False
    error: Optional[str] = None
    parse_result: Optional[ParseResult] = None
    validation_result: Optional[ValidationResult] = None
    import_result: Optional[ImportResult] = None
    import_progress: Optional[ImportProgress] = None
    created_contacts: Tuple[CreatedContact, ...] = ()
    selected_contact_ids: Tuple[int, ...] = ()
    invitation_progress: Optional[InvitationProgress] = None
