"""Builders for import test data: workbooks, CSV files, parse results and a fake datastore."""

import io
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from openpyxl import Workbook

from services.common.result import Result
from services.import_constants import (
    EntityType,
    ImportErrorCode,
    LOCALIZED_SHEET_NAMES,
    SHEET_NAMES,
    SHEET_ORDER,
    TEMPLATE_EXAMPLE_ROWS,
    template_headers,
)
from services.import_persistence import PersistenceAdapter, UpsertOutcome
from services.import_types import ParsedSheet, ParseResult


def sheet_rows(entity: EntityType, rows: Optional[Iterable[Sequence]] = None) -> List[list]:
    """Header row followed by `rows` (the template examples by default)"""
    data = TEMPLATE_EXAMPLE_ROWS[entity] if rows is None else rows
    return [template_headers(entity)] + [list(row) for row in data]


def example_sheets(localized: bool = True, **overrides) -> Dict[str, List[list]]:
    """
    Sheet name to rows for every entity, using the template examples.

    Pass e.g. lots=[...] to replace the data rows of one sheet, or
    lots=None to leave that sheet out of the workbook.
    """
    names = LOCALIZED_SHEET_NAMES if localized else SHEET_NAMES
    sheets = {}
    for entity in SHEET_ORDER:
        if entity.value in overrides and overrides[entity.value] is None:
            continue
        sheets[names[entity]] = sheet_rows(entity, overrides.get(entity.value))
    return sheets


def build_workbook(sheets: Dict[str, List[list]]) -> bytes:
    workbook = Workbook()
    workbook.remove(workbook.active)
    for name, rows in sheets.items():
        worksheet = workbook.create_sheet(name)
        for row in rows:
            worksheet.append(list(row))
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def example_workbook(localized: bool = True, **overrides) -> bytes:
    return build_workbook(example_sheets(localized=localized, **overrides))


def build_csv(rows: List[list], delimiter: str = ';', encoding: str = 'utf-8') -> bytes:
    lines = [delimiter.join('' if value is None else str(value) for value in row) for row in rows]
    return ('\n'.join(lines) + '\n').encode(encoding)


def parsed_sheet(entity: EntityType, rows: Optional[Iterable[Sequence]] = None) -> ParsedSheet:
    """ParsedSheet keyed by template headers; blank strings become None like the parser does"""
    headers = tuple(template_headers(entity))
    data = TEMPLATE_EXAMPLE_ROWS[entity] if rows is None else rows
    parsed_rows = []
    for row in data:
        values = [None if value == '' else value for value in row]
        parsed_rows.append(dict(zip(headers, values)))
    return ParsedSheet(entity=entity, headers=headers, rows=tuple(parsed_rows),
                       source_name=LOCALIZED_SHEET_NAMES[entity])


def example_parse_result(**overrides) -> ParseResult:
    """ParseResult of the template examples; keyword arguments replace one sheet's rows"""
    sheets = {entity: parsed_sheet(entity, overrides.get(entity.value)) for entity in SHEET_ORDER}
    return ParseResult(
        buildings=sheets[EntityType.BUILDINGS],
        lots=sheets[EntityType.LOTS],
        contacts=sheets[EntityType.CONTACTS],
        contracts=sheets[EntityType.CONTRACTS],
        companies=sheets[EntityType.COMPANIES],
        filename='seido-import.xlsx',
    )


def empty_parse_result(**overrides) -> ParseResult:
    """Every sheet empty except the ones given"""
    rows = {entity.value: [] for entity in SHEET_ORDER}
    rows.update(overrides)
    return example_parse_result(**rows)


class InMemoryPersistenceAdapter(PersistenceAdapter):
    """
    Dict backed PersistenceAdapter.

    Upserts are staged until commit(); rollback() drops them. Rows listed
    in `fail_rows` return a failure and rows in `raise_rows` raise, both
    keyed by (entity value, spreadsheet row).
    """

    def __init__(self, fail_rows: Iterable[Tuple[str, int]] = (),
                 raise_rows: Iterable[Tuple[str, int]] = ()):
        self.fail_rows = set(fail_rows)
        self.raise_rows = set(raise_rows)
        self.committed: Dict[tuple, int] = {}
        self.pending: Dict[tuple, int] = {}
        self.calls: List[Tuple[str, int]] = []
        self.begins = 0
        self.commits = 0
        self.rollbacks = 0
        self._next_id = 1

    def upsert(self, entity_type, record, natural_key):
        row_key = (entity_type.value, record.row)
        self.calls.append(row_key)
        if row_key in self.raise_rows:
            raise RuntimeError(f"datastore unavailable at {row_key}")
        if row_key in self.fail_rows:
            return Result.failure("Simulated failure", code=ImportErrorCode.PERSIST_ERROR)

        key = (entity_type.value,) + tuple(natural_key)
        existing = self.pending.get(key, self.committed.get(key))
        identity = {
            'name': getattr(record, 'name', None) or getattr(record, 'reference', None),
            'email': getattr(record, 'email', None),
            'role': record.role.value if entity_type == EntityType.CONTACTS else None,
        }
        if existing is not None:
            return Result.success(UpsertOutcome(id=existing, created=False, **identity))

        entity_id = self._next_id
        self._next_id += 1
        self.pending[key] = entity_id
        return Result.success(UpsertOutcome(id=entity_id, created=True, **identity))

    def begin(self):
        self.begins += 1

    def commit(self):
        self.committed.update(self.pending)
        self.pending.clear()
        self.commits += 1

    def rollback(self):
        self.pending.clear()
        self.rollbacks += 1

    def count(self, entity: EntityType) -> int:
        return sum(1 for key in self.committed if key[0] == entity.value)
