"""
RowValidator - structural and referential validation of a ParseResult.

Validation never stops at the first problem: every row of every sheet is
checked and all errors are returned in (sheet, row) order. Running it twice
on the same ParseResult returns the same errors.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from services.import_constants import (
    EntityType,
    ErrorMessages,
    ImportErrorCode,
    SHEET_NAMES,
    SHEET_ORDER,
    column_field,
    normalize_key,
)
from services.import_schemas import (
    RECORD_TYPES,
    CompanyRecord,
    ContactRecord,
    ImportRecord,
    build_record,
    clean_cell,
)
from services.import_types import (
    ImportData,
    ParsedSheet,
    ParseResult,
    ValidationError,
    ValidationResult,
)

logger = logging.getLogger(__name__)

FOUND = "found"
MISSING = "missing"
AMBIGUOUS = "ambiguous"


def map_row(entity: EntityType, row: Dict[str, Any]) -> Dict[str, Any]:
    """Map a header-keyed row to field names; unknown headers are dropped"""
    values = {}
    for header, value in row.items():
        field = column_field(entity, header)
        if field is not None and field not in values:
            values[field] = value
    return values


def is_blank(values: Dict[str, Any]) -> bool:
    return all(clean_cell(value) is None for value in values.values())


@dataclass(frozen=True)
class ReferenceIndex:
    """
    Natural key to spreadsheet lines, built from the raw Buildings and Lots
    sheets. Lots resolve their building by name, contracts their lot by
    reference.
    """
    buildings: Dict[str, Tuple[int, ...]]
    lots: Dict[str, Tuple[int, ...]]

    @classmethod
    def build(cls, parse_result: ParseResult) -> 'ReferenceIndex':
        return cls(
            buildings=cls._index(parse_result.buildings, 'name'),
            lots=cls._index(parse_result.lots, 'reference'),
        )

    @staticmethod
    def _index(sheet: ParsedSheet, field: str) -> Dict[str, Tuple[int, ...]]:
        index = defaultdict(list)
        for line, row in sheet.iter_rows():
            value = clean_cell(map_row(sheet.entity, row).get(field))
            if value is not None:
                index[normalize_key(value)].append(line)
        return {key: tuple(lines) for key, lines in index.items()}

    @staticmethod
    def _resolve(index: Dict[str, Tuple[int, ...]], value: Any) -> str:
        lines = index.get(normalize_key(value), ())
        if not lines:
            return MISSING
        return FOUND if len(lines) == 1 else AMBIGUOUS

    def resolve_building(self, name: Any) -> str:
        return self._resolve(self.buildings, name)

    def resolve_lot(self, reference: Any) -> str:
        return self._resolve(self.lots, reference)


class RowValidator:
    """Validates every sheet of a ParseResult"""

    def validate(self, parse_result: ParseResult) -> List[ValidationError]:
        """
        Validate all sheets.

        Args:
            parse_result: Parsed file

        Returns:
            All validation errors in (sheet, row) order
        """
        return list(self.validate_all(parse_result).errors)

    def validate_all(self, parse_result: ParseResult) -> ValidationResult:
        """Validate all sheets and return both the errors and the typed records"""
        index = ReferenceIndex.build(parse_result)
        errors: List[ValidationError] = []
        records: Dict[EntityType, List[ImportRecord]] = {}

        for entity in SHEET_ORDER:
            sheet_records, sheet_errors = self._validate_sheet(parse_result.get(entity), index)
            records[entity] = sheet_records
            errors.extend(sheet_errors)

        companies = records[EntityType.COMPANIES] + self._companies_from_contacts(
            records[EntityType.CONTACTS], records[EntityType.COMPANIES]
        )

        data = ImportData(
            companies=tuple(companies),
            contacts=tuple(records[EntityType.CONTACTS]),
            buildings=tuple(records[EntityType.BUILDINGS]),
            lots=tuple(records[EntityType.LOTS]),
            contracts=tuple(records[EntityType.CONTRACTS]),
        )

        if errors:
            logger.info(f"Validation found {len(errors)} error(s)")
        return ValidationResult(errors=tuple(errors), data=data)

    def _validate_sheet(self, sheet: ParsedSheet,
                        index: ReferenceIndex) -> Tuple[List[ImportRecord], List[ValidationError]]:
        record_type = RECORD_TYPES[sheet.entity]
        records: List[ImportRecord] = []
        errors: List[ValidationError] = []
        seen: Dict[Tuple, int] = {}

        for line, row in sheet.iter_rows():
            values = map_row(sheet.entity, row)
            if is_blank(values):
                continue

            record, row_errors = build_record(record_type, values, line)
            row_errors.extend(self._check_references(sheet.entity, values, line, index))
            if record is not None:
                row_errors.extend(self._check_duplicate(record, seen))

            errors.extend(row_errors)
            if record is not None and not row_errors:
                records.append(record)

        return records, errors

    def _check_duplicate(self, record: ImportRecord, seen: Dict[Tuple, int]) -> List[ValidationError]:
        key = self._duplicate_key(record)
        if key is None:
            return []
        first_line = seen.get(key)
        if first_line is None:
            seen[key] = record.row
            return []

        field, value = self._duplicate_label(record)
        return [ValidationError(
            sheet=record.sheet,
            row=record.row,
            message=f"{ErrorMessages.duplicate_in_file(field, value)} (first seen on row {first_line})",
            field=field,
            value=value,
            code=ImportErrorCode.DUPLICATE_IN_FILE,
        )]

    @staticmethod
    def _duplicate_key(record: ImportRecord) -> Optional[Tuple]:
        if isinstance(record, ContactRecord):
            # Contacts without email cannot be told apart reliably
            return record.natural_key if record.email else None
        if isinstance(record, CompanyRecord):
            return (normalize_key(record.name),)
        return record.natural_key

    @staticmethod
    def _duplicate_label(record: ImportRecord) -> Tuple[str, Any]:
        if record.entity == EntityType.LOTS:
            return 'reference', record.reference
        if record.entity == EntityType.CONTACTS:
            return 'email', record.email
        if record.entity == EntityType.CONTRACTS:
            return 'title', f"{record.title} / {record.lot_reference} / {record.start_date.isoformat()}"
        return 'name', record.name

    def _check_references(self, entity: EntityType, values: Dict[str, Any], line: int,
                          index: ReferenceIndex) -> List[ValidationError]:
        """Cross-sheet checks run on the raw values so they apply even when the schema failed"""
        sheet = SHEET_NAMES[entity]
        errors = []

        if entity == EntityType.LOTS:
            building_name = clean_cell(values.get('building_name'))
            if building_name is not None:
                status = index.resolve_building(building_name)
                if status != FOUND:
                    errors.append(self._reference_error(sheet, line, 'building_name', 'Building',
                                                        building_name, status))
            else:
                for field in ('street', 'city'):
                    if clean_cell(values.get(field)) is None:
                        errors.append(ValidationError(
                            sheet=sheet,
                            row=line,
                            message=ErrorMessages.independent_lot_address(field),
                            field=field,
                            code=ImportErrorCode.REQUIRED_FIELD,
                        ))

        elif entity == EntityType.CONTRACTS:
            lot_reference = clean_cell(values.get('lot_reference'))
            if lot_reference is not None:
                status = index.resolve_lot(lot_reference)
                if status != FOUND:
                    errors.append(self._reference_error(sheet, line, 'lot_reference', 'Lot',
                                                        lot_reference, status))

        return errors

    @staticmethod
    def _reference_error(sheet: str, line: int, field: str, label: str, value: Any,
                         status: str) -> ValidationError:
        if status == AMBIGUOUS:
            message = ErrorMessages.reference_ambiguous(label, value)
            code = ImportErrorCode.REFERENCE_AMBIGUOUS
        else:
            message = ErrorMessages.reference_not_found(label, value)
            code = ImportErrorCode.REFERENCE_NOT_FOUND
        return ValidationError(sheet=sheet, row=line, message=message, field=field,
                               value=value, code=code)

    @staticmethod
    def _companies_from_contacts(contacts: List[ContactRecord],
                                 companies: List[CompanyRecord]) -> List[CompanyRecord]:
        """Companies named by contacts but absent from the Companies sheet"""
        known = {normalize_key(company.name) for company in companies}
        derived = []
        for contact in contacts:
            if not contact.company_name:
                continue
            key = normalize_key(contact.company_name)
            if key in known:
                continue
            known.add(key)
            derived.append(CompanyRecord(row=contact.row, name=contact.company_name,
                                         derived_from_contacts=True))
        return derived
