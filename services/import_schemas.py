"""
Import Schemas - typed row records built from raw spreadsheet cells.

Every sheet row is mapped to field names, cleaned, then validated by one of
the pydantic models below. Records are immutable and carry the spreadsheet
line they came from so later failures can be reported against it.
"""

import math
import re
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
from pydantic import field_validator, model_validator
from pydantic_core import PydanticCustomError

from services.import_constants import (
    CONTRACT_TYPE_ALIASES,
    COUNTRY_ALIASES,
    DEFAULT_COUNTRY,
    EMAIL_PATTERN,
    EMAIL_RE,
    FORMAT_HINTS,
    POSTAL_CODE_PATTERN,
    ROLE_ALIASES,
    SHEET_NAMES,
    VAT_NUMBER_PATTERN,
    WEBSITE_PATTERN,
    ContactRole,
    ContractStatus,
    ContractType,
    Country,
    EntityType,
    ErrorMessages,
    ImportErrorCode,
    InterventionType,
    LotCategory,
    normalize_key,
    normalize_token,
)
from services.import_types import ValidationError
from utils.datetime_utils import add_months

# Excel serial day 0
EXCEL_EPOCH = date(1899, 12, 30)

DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%Y/%m/%d")

ENUM_FIELDS = {
    'category': LotCategory,
    'role': ContactRole,
    'contract_type': ContractType,
    'speciality': InterventionType,
    'country': Country,
}

NUMERIC_BOUNDS = {
    'floor': (-10, 200),
    'duration_months': (1, 120),
    'rent_amount': (0, 1_000_000),
    'charges_amount': (0, 100_000),
    'guarantee_amount': (0, 1_000_000),
}

DATE_FIELDS = ('start_date',)


# Cell coercion --------------------------------------------------------------

def clean_cell(value: Any) -> Any:
    """Normalize one raw cell: blank to None, integral floats to int, midnight datetimes to dates"""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        if math.isnan(value):
            return None
        return int(value) if value.is_integer() else value
    if isinstance(value, datetime):
        if value.time() == datetime.min.time():
            return value.date()
        return value
    return value


def cell_to_text(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, float):
        return format(value, 'g')
    return str(value)


def parse_date_cell(value: Any) -> Any:
    """Accept dates, ISO and European day-first strings, and Excel serial numbers"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return EXCEL_EPOCH + timedelta(days=int(value))
    if isinstance(value, str):
        text = value.strip()
        # ISO timestamps such as 2024-01-01T00:00:00
        text = text.split("T")[0].split(" ")[0]
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
    raise PydanticCustomError('invalid_date', 'Invalid date')


def parse_amount_cell(value: Any) -> Any:
    """Amounts may use a comma decimal separator, spaces and a currency sign"""
    if isinstance(value, str):
        text = value.replace("€", "").replace(" ", "").replace(" ", "")
        if "," in text and "." in text:
            # The right-most separator is the decimal one
            if text.rfind(",") > text.rfind("."):
                text = text.replace(".", "")
            else:
                text = text.replace(",", "")
        return text.replace(",", ".")
    return value


def split_email_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.lower() for part in re.split(r"[,;\s]+", value) if part]
    return value


# Records ----------------------------------------------------------------------

class ImportRecord(BaseModel):
    """Base class of typed rows; `row` is the 1-based spreadsheet line"""

    model_config = ConfigDict(frozen=True, extra='ignore', str_strip_whitespace=True)

    entity: ClassVar[EntityType]
    text_fields: ClassVar[Tuple[str, ...]] = ()

    row: int

    @model_validator(mode='before')
    @classmethod
    def clean_cells(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        cleaned = {}
        for key, value in data.items():
            value = clean_cell(value)
            if value is None:
                continue
            if key in cls.text_fields and not isinstance(value, str):
                value = cell_to_text(value)
            cleaned[key] = value
        return cleaned

    @property
    def sheet(self) -> str:
        return SHEET_NAMES[self.entity]

    @property
    def natural_key(self) -> Tuple:
        raise NotImplementedError

    @property
    def label(self) -> str:
        return str(getattr(self, 'name', None) or getattr(self, 'reference', None)
                   or getattr(self, 'title', None) or self.row)


def _normalize_enum(value: Any, aliases: Optional[Dict[str, Any]] = None) -> Any:
    if value is None or not isinstance(value, str):
        return value
    token = normalize_token(value)
    if aliases is not None:
        return aliases.get(token, value)
    return token


class BuildingRecord(ImportRecord):
    entity: ClassVar[EntityType] = EntityType.BUILDINGS
    text_fields: ClassVar[Tuple[str, ...]] = ('name', 'address', 'city', 'postal_code', 'description')

    name: str = Field(min_length=1, max_length=200)
    address: str = Field(min_length=1, max_length=500)
    city: str = Field(min_length=1, max_length=100)
    postal_code: str = Field(pattern=POSTAL_CODE_PATTERN)
    country: Country = DEFAULT_COUNTRY
    description: Optional[str] = Field(None, max_length=5000)

    @field_validator('country', mode='before')
    @classmethod
    def _country(cls, value):
        return _normalize_enum(value, COUNTRY_ALIASES)

    @property
    def natural_key(self) -> Tuple:
        return (normalize_key(self.name),)


class LotRecord(ImportRecord):
    entity: ClassVar[EntityType] = EntityType.LOTS
    text_fields: ClassVar[Tuple[str, ...]] = (
        'reference', 'building_name', 'street', 'city', 'postal_code', 'description',
    )

    reference: str = Field(min_length=1, max_length=100)
    building_name: Optional[str] = Field(None, max_length=200)
    category: LotCategory = LotCategory.APPARTEMENT
    floor: Optional[int] = Field(None, ge=-10, le=200)
    street: Optional[str] = Field(None, max_length=500)
    city: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, pattern=POSTAL_CODE_PATTERN)
    country: Country = DEFAULT_COUNTRY
    description: Optional[str] = Field(None, max_length=5000)

    @field_validator('category', mode='before')
    @classmethod
    def _category(cls, value):
        return _normalize_enum(value)

    @field_validator('country', mode='before')
    @classmethod
    def _country(cls, value):
        return _normalize_enum(value, COUNTRY_ALIASES)

    @property
    def is_independent(self) -> bool:
        return not self.building_name

    @property
    def natural_key(self) -> Tuple:
        return (normalize_key(self.reference), normalize_key(self.building_name))


class ContactRecord(ImportRecord):
    entity: ClassVar[EntityType] = EntityType.CONTACTS
    text_fields: ClassVar[Tuple[str, ...]] = (
        'name', 'email', 'phone', 'address', 'company_name', 'notes',
    )

    name: str = Field(min_length=1, max_length=200)
    email: Optional[str] = Field(None, max_length=255, pattern=EMAIL_PATTERN)
    phone: Optional[str] = Field(None, max_length=50)
    role: ContactRole
    address: Optional[str] = Field(None, max_length=500)
    speciality: Optional[InterventionType] = None
    company_name: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator('email', mode='before')
    @classmethod
    def _email(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator('role', mode='before')
    @classmethod
    def _role(cls, value):
        return _normalize_enum(value, ROLE_ALIASES)

    @field_validator('speciality', mode='before')
    @classmethod
    def _speciality(cls, value):
        return _normalize_enum(value)

    @property
    def natural_key(self) -> Tuple:
        if self.email:
            return ('email', self.email)
        return ('name', normalize_key(self.name), self.role.value)


class ContractRecord(ImportRecord):
    entity: ClassVar[EntityType] = EntityType.CONTRACTS
    text_fields: ClassVar[Tuple[str, ...]] = ('title', 'lot_reference', 'comments')

    title: str = Field(min_length=1, max_length=200)
    lot_reference: str = Field(min_length=1, max_length=100)
    start_date: date
    duration_months: int = Field(ge=1, le=120)
    rent_amount: Decimal = Field(ge=0, le=1_000_000, decimal_places=2)
    charges_amount: Optional[Decimal] = Field(None, ge=0, le=100_000, decimal_places=2)
    contract_type: ContractType = ContractType.BAIL_HABITATION
    guarantee_amount: Optional[Decimal] = Field(None, ge=0, le=1_000_000, decimal_places=2)
    tenant_emails: List[str] = Field(default_factory=list)
    guarantor_emails: List[str] = Field(default_factory=list)
    comments: Optional[str] = Field(None, max_length=5000)

    @field_validator('start_date', mode='before')
    @classmethod
    def _start_date(cls, value):
        return parse_date_cell(value)

    @field_validator('rent_amount', 'charges_amount', 'guarantee_amount', mode='before')
    @classmethod
    def _amount(cls, value):
        return parse_amount_cell(value)

    @field_validator('contract_type', mode='before')
    @classmethod
    def _contract_type(cls, value):
        # Unknown variants fall back to a residential lease
        if value is None:
            return ContractType.BAIL_HABITATION
        return CONTRACT_TYPE_ALIASES.get(normalize_token(cell_to_text(value)), ContractType.BAIL_HABITATION)

    @field_validator('tenant_emails', 'guarantor_emails', mode='before')
    @classmethod
    def _split_emails(cls, value):
        return split_email_list(value)

    @field_validator('tenant_emails', 'guarantor_emails')
    @classmethod
    def _check_emails(cls, value: List[str]) -> List[str]:
        for email in value:
            if not EMAIL_RE.match(email):
                raise PydanticCustomError(
                    'invalid_format', 'Invalid email "{email}"', {'email': email}
                )
        return value

    @property
    def end_date(self) -> date:
        return add_months(self.start_date, self.duration_months)

    def status_on(self, today: date) -> ContractStatus:
        if self.start_date > today:
            return ContractStatus.A_VENIR
        if self.end_date < today:
            return ContractStatus.EXPIRE
        return ContractStatus.ACTIF

    @property
    def natural_key(self) -> Tuple:
        return (normalize_key(self.lot_reference), normalize_key(self.title), self.start_date)


class CompanyRecord(ImportRecord):
    entity: ClassVar[EntityType] = EntityType.COMPANIES
    text_fields: ClassVar[Tuple[str, ...]] = (
        'name', 'legal_name', 'vat_number', 'street', 'street_number',
        'postal_code', 'city', 'email', 'phone', 'website',
    )

    name: str = Field(min_length=1, max_length=200)
    legal_name: Optional[str] = Field(None, max_length=200)
    vat_number: Optional[str] = Field(None, max_length=50, pattern=VAT_NUMBER_PATTERN)
    street: Optional[str] = Field(None, max_length=500)
    street_number: Optional[str] = Field(None, max_length=20)
    postal_code: Optional[str] = Field(None, max_length=20)
    city: Optional[str] = Field(None, max_length=100)
    country: Country = DEFAULT_COUNTRY
    email: Optional[str] = Field(None, max_length=255, pattern=EMAIL_PATTERN)
    phone: Optional[str] = Field(None, max_length=50)
    website: Optional[str] = Field(None, max_length=500, pattern=WEBSITE_PATTERN)
    # Set for companies only named in the Contacts sheet
    derived_from_contacts: bool = False

    @field_validator('vat_number', mode='before')
    @classmethod
    def _vat(cls, value):
        if isinstance(value, str):
            return re.sub(r"[\s.\-]", "", value).upper()
        return value

    @field_validator('email', mode='before')
    @classmethod
    def _email(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator('country', mode='before')
    @classmethod
    def _country(cls, value):
        return _normalize_enum(value, COUNTRY_ALIASES)

    @property
    def sheet(self) -> str:
        if self.derived_from_contacts:
            return SHEET_NAMES[EntityType.CONTACTS]
        return SHEET_NAMES[self.entity]

    @property
    def natural_key(self) -> Tuple:
        if self.vat_number:
            return ('vat', self.vat_number)
        return ('name', normalize_key(self.name))


ImportRecordType = Union[BuildingRecord, LotRecord, ContactRecord, ContractRecord, CompanyRecord]

RECORD_TYPES: Dict[EntityType, Type[ImportRecord]] = {
    EntityType.BUILDINGS: BuildingRecord,
    EntityType.LOTS: LotRecord,
    EntityType.CONTACTS: ContactRecord,
    EntityType.CONTRACTS: ContractRecord,
    EntityType.COMPANIES: CompanyRecord,
}


# Error translation ----------------------------------------------------------

def _describe(error: Dict[str, Any], field: Optional[str]) -> Tuple[str, str]:
    """Return (code, message) for one pydantic error"""
    error_type = error.get('type', '')
    ctx = error.get('ctx') or {}
    label = field or 'row'

    if error_type in ('missing', 'string_too_short'):
        return ImportErrorCode.REQUIRED_FIELD, ErrorMessages.required_field(label)
    if field in DATE_FIELDS:
        return ImportErrorCode.INVALID_DATE, ErrorMessages.invalid_date(label)
    if error_type == 'string_too_long':
        return ImportErrorCode.TOO_LONG, ErrorMessages.too_long(label, ctx.get('max_length'))
    if error_type == 'string_pattern_mismatch':
        hint = FORMAT_HINTS.get(label, str(ctx.get('pattern', '')))
        return ImportErrorCode.INVALID_FORMAT, ErrorMessages.invalid_format(label, hint)
    if error_type == 'invalid_format':
        return ImportErrorCode.INVALID_FORMAT, f'{error.get("msg")} in "{label}"'
    if error_type == 'enum' and field in ENUM_FIELDS:
        allowed = [member.value for member in ENUM_FIELDS[field]]
        return ImportErrorCode.INVALID_ENUM, ErrorMessages.invalid_enum(label, allowed)
    if error_type in ('greater_than_equal', 'less_than_equal', 'greater_than', 'less_than'):
        minimum, maximum = NUMERIC_BOUNDS.get(label, (ctx.get('ge'), ctx.get('le')))
        return ImportErrorCode.OUT_OF_RANGE, ErrorMessages.out_of_range(label, minimum, maximum)
    if error_type.startswith(('int_', 'float_', 'decimal_')):
        return ImportErrorCode.INVALID_NUMBER, ErrorMessages.invalid_number(label)
    return ImportErrorCode.INVALID_FORMAT, f'"{label}": {error.get("msg")}'


def translate_errors(exc: PydanticValidationError, record_type: Type[ImportRecord],
                     values: Dict[str, Any], line: int) -> List[ValidationError]:
    """Turn a pydantic ValidationError into row errors, in field order"""
    errors = []
    sheet = SHEET_NAMES[record_type.entity]
    for error in exc.errors():
        loc = error.get('loc') or ()
        field = str(loc[0]) if loc else None
        code, message = _describe(error, field)
        errors.append(ValidationError(
            sheet=sheet,
            row=line,
            message=message,
            field=field,
            value=values.get(field) if field else None,
            code=code,
        ))
    return errors


def build_record(record_type: Type[ImportRecord], values: Dict[str, Any],
                 line: int) -> Tuple[Optional[ImportRecord], List[ValidationError]]:
    """Validate mapped row values; returns the record or the row's errors"""
    try:
        return record_type.model_validate({**values, 'row': line}), []
    except PydanticValidationError as exc:
        return None, translate_errors(exc, record_type, values, line)
