"""
SheetParser - Reads an uploaded workbook or CSV into ParsedSheets.

A workbook carries one sheet per entity type (Buildings, Lots, Contacts,
Contracts and optionally Companies). A CSV carries a single table whose
entity type is detected from its headers.
"""

import io
import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from services.common.result import Result
from services.import_constants import (
    COLUMN_MAPPINGS,
    EntityType,
    FileConstraints,
    ImportErrorCode,
    LOCALIZED_SHEET_NAMES,
    REQUIRED_SHEETS,
    SHEET_NAMES,
    SHEET_ORDER,
    column_field,
    resolve_sheet_entity,
)
from services.import_types import ParsedSheet, ParseResult

logger = logging.getLogger(__name__)

EXCEL_ENGINES = {
    '.xlsx': 'openpyxl',
    '.xls': 'xlrd',
}

CSV_DELIMITERS = (';', ',', '\t')


class SheetParser:
    """Parses spreadsheet bytes into a ParseResult"""

    def __init__(self,
                 max_file_size: int = FileConstraints.MAX_FILE_SIZE,
                 max_rows_per_sheet: int = FileConstraints.MAX_ROWS_PER_SHEET):
        self.max_file_size = max_file_size
        self.max_rows_per_sheet = max_rows_per_sheet

    # File selection checks

    def check_file(self, filename: Optional[str], size: int) -> Result[None]:
        """
        Check extension and size of a selected file before it is parsed.

        Args:
            filename: Original file name
            size: Size in bytes

        Returns:
            Result with UNSUPPORTED_FORMAT or FILE_TOO_LARGE on failure
        """
        if not filename:
            return Result.failure("No file selected", code=ImportErrorCode.FILE_REQUIRED)

        extension = self._extension(filename)
        if extension not in FileConstraints.ALLOWED_EXTENSIONS:
            return Result.failure(
                f"Unsupported file type '{extension or filename}'. "
                f"Accepted: {', '.join(FileConstraints.ALLOWED_EXTENSIONS)}",
                code=ImportErrorCode.UNSUPPORTED_FORMAT
            )

        if size > self.max_file_size:
            max_mb = self.max_file_size / (1024 * 1024)
            return Result.failure(
                f"File is too large ({size / (1024 * 1024):.1f} MB). Maximum size is {max_mb:g} MB",
                code=ImportErrorCode.FILE_TOO_LARGE,
                metadata={'size': size, 'max_size': self.max_file_size}
            )

        return Result.success(None)

    # Parsing

    def parse(self, content: bytes, filename: str) -> Result[ParseResult]:
        """
        Parse file bytes into one ParsedSheet per entity type.

        Args:
            content: Raw file bytes
            filename: Original file name, used to pick the reader

        Returns:
            Result containing the ParseResult, or a parse failure
        """
        extension = self._extension(filename)
        if not content:
            return Result.failure("The file is empty", code=ImportErrorCode.UNREADABLE_FILE)

        try:
            if extension == '.csv':
                result = self._parse_csv(content, filename)
            elif extension in EXCEL_ENGINES:
                result = self._parse_workbook(content, filename, EXCEL_ENGINES[extension])
            else:
                return Result.failure(
                    f"Unsupported file type '{extension or filename}'",
                    code=ImportErrorCode.UNSUPPORTED_FORMAT
                )
        except Exception as e:
            logger.error(f"Failed to read {filename}: {e}")
            return Result.failure(
                f"Unable to read the file: {e}",
                code=ImportErrorCode.UNREADABLE_FILE
            )

        if result.is_success:
            parse_result = result.data
            logger.info(
                f"Parsed {filename}: " + ", ".join(
                    f"{sheet.sheet}={sheet.row_count}" for sheet in parse_result.sheets()
                )
            )
        return result

    def _parse_workbook(self, content: bytes, filename: str, engine: str) -> Result[ParseResult]:
        frames = pd.read_excel(
            io.BytesIO(content),
            sheet_name=None,
            header=None,
            dtype=object,
            engine=engine,
        )

        sheets: Dict[EntityType, ParsedSheet] = {}
        for sheet_name, frame in frames.items():
            entity = resolve_sheet_entity(str(sheet_name))
            if entity is None:
                logger.debug(f"Ignoring sheet '{sheet_name}' in {filename}")
                continue
            if entity in sheets:
                logger.warning(f"Sheet '{sheet_name}' duplicates {SHEET_NAMES[entity]}, ignored")
                continue
            sheets[entity] = self._frame_to_sheet(entity, frame, str(sheet_name))

        missing = [entity for entity in REQUIRED_SHEETS if entity not in sheets]
        if missing:
            names = [f"{SHEET_NAMES[e]} ({LOCALIZED_SHEET_NAMES[e]})" for e in missing]
            return Result.failure(
                f"Missing sheet(s): {', '.join(names)}. Check the sheet names against the template",
                code=ImportErrorCode.MISSING_SHEET,
                metadata={'missing_sheets': [SHEET_NAMES[e] for e in missing],
                          'found_sheets': [str(name) for name in frames]}
            )

        return self._build_result(sheets, filename)

    def _parse_csv(self, content: bytes, filename: str) -> Result[ParseResult]:
        text = self._decode(content)
        delimiter = self.detect_delimiter(text)
        frame = pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            header=None,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
        )

        headers = [self._python_value(value) for value in frame.iloc[0].tolist()] if len(frame) else []
        entity = self.detect_entity([str(h) for h in headers if h is not None])
        if entity is None:
            return Result.failure(
                "Could not recognise the CSV columns. Use the headers of one template sheet",
                code=ImportErrorCode.UNSUPPORTED_FORMAT,
                metadata={'headers': [str(h) for h in headers if h is not None]}
            )

        logger.info(f"Detected {SHEET_NAMES[entity]} data in CSV {filename}")
        return self._build_result({entity: self._frame_to_sheet(entity, frame, filename)}, filename)

    def _build_result(self, sheets: Dict[EntityType, ParsedSheet], filename: str) -> Result[ParseResult]:
        for entity in SHEET_ORDER:
            sheet = sheets.get(entity)
            if sheet is not None and sheet.row_count > self.max_rows_per_sheet:
                return Result.failure(
                    f"Sheet {sheet.sheet} has {sheet.row_count} rows; "
                    f"the maximum is {self.max_rows_per_sheet}",
                    code=ImportErrorCode.TOO_MANY_ROWS
                )

        for entity in SHEET_ORDER:
            sheets.setdefault(entity, ParsedSheet(entity=entity))

        return Result.success(ParseResult(
            buildings=sheets[EntityType.BUILDINGS],
            lots=sheets[EntityType.LOTS],
            contacts=sheets[EntityType.CONTACTS],
            contracts=sheets[EntityType.CONTRACTS],
            companies=sheets[EntityType.COMPANIES],
            filename=filename,
        ))

    def _frame_to_sheet(self, entity: EntityType, frame: pd.DataFrame, source_name: str) -> ParsedSheet:
        """First row is the header; each later row becomes a header-keyed dict"""
        grid = [[self._python_value(value) for value in row]
                for row in frame.itertuples(index=False, name=None)]
        if not grid:
            return ParsedSheet(entity=entity, source_name=source_name)

        columns: List[Tuple[int, str]] = []
        seen = set()
        for index, cell in enumerate(grid[0]):
            if cell is None:
                continue
            header = str(cell).strip()
            if not header or header in seen:
                continue
            seen.add(header)
            columns.append((index, header))

        rows = [
            {header: (row[index] if index < len(row) else None) for index, header in columns}
            for row in grid[1:]
        ]
        # Trailing blank rows are formatting leftovers; interior blanks keep line numbers exact
        while rows and all(value is None for value in rows[-1].values()):
            rows.pop()

        return ParsedSheet(
            entity=entity,
            headers=tuple(header for _, header in columns),
            rows=tuple(rows),
            source_name=source_name,
        )

    # Helpers

    @staticmethod
    def detect_entity(headers: List[str]) -> Optional[EntityType]:
        """Pick the entity whose required columns are all present, preferring the best coverage"""
        best_entity = None
        best_score = 0
        for entity in SHEET_ORDER:
            fields = {column_field(entity, header) for header in headers} - {None}
            required = {m.field for m in COLUMN_MAPPINGS[entity] if m.required}
            if not required.issubset(fields):
                continue
            if len(fields) > best_score:
                best_entity, best_score = entity, len(fields)
        return best_entity

    @staticmethod
    def detect_delimiter(text: str) -> str:
        first_line = next((line for line in text.splitlines() if line.strip()), "")
        counts = {delimiter: first_line.count(delimiter) for delimiter in CSV_DELIMITERS}
        delimiter, count = max(counts.items(), key=lambda item: item[1])
        return delimiter if count else ','

    @staticmethod
    def _decode(content: bytes) -> str:
        try:
            return content.decode('utf-8-sig')
        except UnicodeDecodeError:
            # Excel on Windows saves CSV as cp1252
            return content.decode('cp1252')

    @staticmethod
    def _python_value(value: Any) -> Any:
        """Convert pandas/numpy cell values into plain Python values"""
        if value is None or value is pd.NaT:
            return None
        if isinstance(value, pd.Timestamp):
            return None if pd.isna(value) else value.to_pydatetime()
        if isinstance(value, datetime):
            return value
        if hasattr(value, 'item') and not isinstance(value, (str, bytes)):
            value = value.item()
        if isinstance(value, float) and math.isnan(value):
            return None
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @staticmethod
    def _extension(filename: Optional[str]) -> str:
        if not filename or '.' not in filename:
            return ''
        return '.' + filename.rsplit('.', 1)[1].lower()
