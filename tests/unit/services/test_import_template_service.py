"""
Tests for ImportTemplateService
"""

import io

import pytest
from openpyxl import load_workbook

from services.import_template_service import ImportTemplateService
from services.row_validator import RowValidator
from services.sheet_parser import SheetParser


@pytest.fixture
def template_service():
    return ImportTemplateService()


class TestImportTemplateService:

    def test_full_template_sheets(self, template_service):
        result = template_service.build_template()

        assert result.is_success
        assert result.metadata['filename'] == 'seido-import-full.xlsx'
        workbook = load_workbook(io.BytesIO(result.data))
        assert workbook.sheetnames == ['Instructions', 'Immeubles', 'Lots', 'Contacts', 'Baux', 'Sociétés']

    def test_headers_and_dropdowns(self, template_service):
        workbook = load_workbook(io.BytesIO(template_service.build_template('contacts').data))
        sheet = workbook['Contacts']

        assert [cell.value for cell in sheet[1]][:4] == ['Nom*', 'Email', 'Téléphone', 'Rôle*']
        assert sheet.freeze_panes == 'A2'
        formulas = [validation.formula1 for validation in sheet.data_validations.dataValidation]
        assert '"locataire,prestataire,proprietaire"' in formulas

    def test_full_template_round_trips_without_errors(self, template_service):
        content = template_service.build_template('full').data

        parsed = SheetParser().parse(content, 'seido-import-full.xlsx')
        assert parsed.is_success
        validation = RowValidator().validate_all(parsed.data)

        assert validation.errors == ()
        assert validation.data.total == 11

    def test_single_sheet_template(self, template_service):
        result = template_service.build_template('LOTS')

        workbook = load_workbook(io.BytesIO(result.data))
        assert workbook.sheetnames == ['Instructions', 'Lots']
        assert result.metadata['filename'] == 'seido-import-lots.xlsx'

    def test_unknown_template_type(self, template_service):
        result = template_service.build_template('invoices')

        assert result.is_failure
        assert result.error_code == "INVALID_TEMPLATE_TYPE"
