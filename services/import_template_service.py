"""
ImportTemplateService - builds the downloadable import workbook.
"""

import io
import logging
from typing import Dict, Tuple

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.datavalidation import DataValidation

from services.common.result import Result
from services.import_constants import (
    COLUMN_MAPPINGS,
    EntityType,
    FileConstraints,
    LOCALIZED_SHEET_NAMES,
    SHEET_ORDER,
    TEMPLATE_EXAMPLE_ROWS,
    ContactRole,
    ContractType,
    Country,
    InterventionType,
    LotCategory,
    template_headers,
)

logger = logging.getLogger(__name__)

TEMPLATE_TYPES: Dict[str, Tuple[EntityType, ...]] = {
    'full': SHEET_ORDER,
    'buildings': (EntityType.BUILDINGS,),
    'lots': (EntityType.LOTS,),
    'contacts': (EntityType.CONTACTS,),
    'contracts': (EntityType.CONTRACTS,),
    'companies': (EntityType.COMPANIES,),
}

# Drop-down lists offered in the template, by field
ENUM_CHOICES = {
    'category': [c.value for c in LotCategory],
    'role': [r.value for r in ContactRole],
    'contract_type': [t.value for t in ContractType],
    'speciality': [s.value for s in InterventionType],
    'country': [c.value for c in Country],
}

HEADER_FONT = Font(bold=True, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="1F4E78", end_color="1F4E78", fill_type="solid")
REQUIRED_FILL = PatternFill(start_color="C00000", end_color="C00000", fill_type="solid")

INSTRUCTIONS = [
    "How to fill this workbook",
    "",
    "Columns marked with * are required.",
    "Lots reference their building by its exact name (column 'Nom Immeuble').",
    "A lot without building is independent and needs a street and a city.",
    "Contracts reference their lot by reference (column 'Réf Lot').",
    "Dates: YYYY-MM-DD or DD/MM/YYYY. Amounts may use a comma as decimal separator.",
    "Several tenant or guarantor emails are separated by commas.",
    "Re-importing the same file updates existing records instead of duplicating them.",
    f"Maximum {FileConstraints.MAX_ROWS_PER_SHEET} rows per sheet, "
    f"{FileConstraints.MAX_FILE_SIZE // (1024 * 1024)} MB per file.",
]


class ImportTemplateService:
    """Generates xlsx templates with headers, example rows and drop-downs"""

    def build_template(self, template_type: str = 'full') -> Result[bytes]:
        """
        Build a template workbook.

        Args:
            template_type: 'full' or a single entity name

        Returns:
            Result containing the xlsx bytes
        """
        entities = TEMPLATE_TYPES.get((template_type or 'full').lower())
        if entities is None:
            return Result.failure(
                f"Unknown template type '{template_type}'. Use one of: {', '.join(TEMPLATE_TYPES)}",
                code="INVALID_TEMPLATE_TYPE"
            )

        workbook = Workbook()
        instructions = workbook.active
        instructions.title = "Instructions"
        for line in INSTRUCTIONS:
            instructions.append([line])
        instructions["A1"].font = Font(bold=True, size=14)
        instructions.column_dimensions["A"].width = 90

        for entity in entities:
            self._add_sheet(workbook, entity)

        buffer = io.BytesIO()
        workbook.save(buffer)
        logger.info(f"Generated '{template_type}' import template with {len(entities)} sheet(s)")
        return Result.success(buffer.getvalue(), metadata={'filename': self.filename(template_type)})

    @staticmethod
    def filename(template_type: str = 'full') -> str:
        return f"seido-import-{(template_type or 'full').lower()}.xlsx"

    def _add_sheet(self, workbook: Workbook, entity: EntityType) -> None:
        sheet = workbook.create_sheet(LOCALIZED_SHEET_NAMES[entity])
        headers = template_headers(entity)
        sheet.append(headers)
        for row in TEMPLATE_EXAMPLE_ROWS.get(entity, []):
            sheet.append(row)

        for index, mapping in enumerate(COLUMN_MAPPINGS[entity], start=1):
            cell = sheet.cell(row=1, column=index)
            cell.font = HEADER_FONT
            cell.fill = REQUIRED_FILL if mapping.required else HEADER_FILL
            letter = get_column_letter(index)
            sheet.column_dimensions[letter].width = max(14, len(mapping.header) + 6)

            choices = ENUM_CHOICES.get(mapping.field)
            if choices:
                validation = DataValidation(
                    type="list",
                    formula1='"' + ",".join(choices) + '"',
                    allow_blank=not mapping.required,
                )
                validation.add(f"{letter}2:{letter}{FileConstraints.MAX_ROWS_PER_SHEET + 1}")
                sheet.add_data_validation(validation)

        sheet.freeze_panes = "A2"
