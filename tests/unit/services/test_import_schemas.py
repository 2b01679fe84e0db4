"""
Tests for the typed import records and cell coercion
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from services.import_constants import (
    ContactRole,
    ContractStatus,
    ContractType,
    Country,
    ImportErrorCode,
    LotCategory,
)
from services.import_schemas import (
    BuildingRecord,
    CompanyRecord,
    ContactRecord,
    ContractRecord,
    LotRecord,
    build_record,
    clean_cell,
    parse_amount_cell,
    parse_date_cell,
)


def contract_values(**overrides):
    values = {
        'title': 'Bail LEO-A01',
        'lot_reference': 'LEO-A01',
        'start_date': '2024-01-01',
        'duration_months': 36,
        'rent_amount': 850,
    }
    values.update(overrides)
    return values


class TestCellCoercion:

    def test_clean_cell(self):
        assert clean_cell('  ') is None
        assert clean_cell(' Leopold ') == 'Leopold'
        assert clean_cell(3.0) == 3
        assert clean_cell(2.5) == 2.5
        assert clean_cell(float('nan')) is None
        assert clean_cell(datetime(2024, 1, 1)) == date(2024, 1, 1)

    @pytest.mark.parametrize('value, expected', [
        ('2024-03-15', date(2024, 3, 15)),
        ('15/03/2024', date(2024, 3, 15)),
        ('15.03.2024', date(2024, 3, 15)),
        ('2024-03-15T00:00:00', date(2024, 3, 15)),
        (45292, date(2024, 1, 1)),
        (datetime(2024, 3, 15, 10, 30), date(2024, 3, 15)),
    ])
    def test_parse_date_cell(self, value, expected):
        assert parse_date_cell(value) == expected

    @pytest.mark.parametrize('value, expected', [
        ('1.250,50', '1250.50'),
        ('1,250.50', '1250.50'),
        ('850,5 €', '850.5'),
        ('1 200', '1200'),
        (850, 850),
    ])
    def test_parse_amount_cell(self, value, expected):
        assert parse_amount_cell(value) == expected


class TestRecords:

    def test_building_defaults_and_natural_key(self):
        record = BuildingRecord(row=2, name='Le Sablon', address='8 Place du Petit Sablon',
                                city='Bruxelles', postal_code=1000)

        assert record.postal_code == '1000'
        assert record.country == Country.BELGIQUE
        assert record.natural_key == ('le sablon',)
        assert record.sheet == 'Buildings'

    def test_lot_normalizes_enums(self):
        record = LotRecord(row=3, reference='LEO-A01', building_name='Résidence Leopold',
                           category='Local Commercial', country='Belgium', floor=2.0)

        assert record.category == LotCategory.LOCAL_COMMERCIAL
        assert record.country == Country.BELGIQUE
        assert record.floor == 2
        assert not record.is_independent

    def test_contact_role_aliases_and_email_case(self):
        record = ContactRecord(row=2, name='Marie', email=' Marie.Dubois@Example.com ', role='Tenant')

        assert record.role == ContactRole.LOCATAIRE
        assert record.email == 'marie.dubois@example.com'
        assert record.natural_key == ('email', 'marie.dubois@example.com')

    def test_contact_without_email_is_keyed_by_name_and_role(self):
        record = ContactRecord(row=2, name='Luc  Plombier', role='prestataire')

        assert record.natural_key == ('name', 'luc plombier', 'prestataire')

    def test_contract_derived_fields(self):
        record = ContractRecord(row=2, **contract_values(
            start_date='31/01/2024', duration_months=1, rent_amount='850,00',
            tenant_emails='A@example.com; b@example.com',
        ))

        assert record.start_date == date(2024, 1, 31)
        assert record.end_date == date(2024, 2, 29)
        assert record.rent_amount == Decimal('850.00')
        assert record.tenant_emails == ['a@example.com', 'b@example.com']
        assert record.contract_type == ContractType.BAIL_HABITATION

    def test_contract_type_aliases_and_fallback(self):
        assert ContractRecord(row=2, **contract_values(contract_type='Meublé')).contract_type == \
            ContractType.BAIL_MEUBLE
        assert ContractRecord(row=2, **contract_values(contract_type='commercial')).contract_type == \
            ContractType.BAIL_HABITATION

    def test_contract_status(self):
        record = ContractRecord(row=2, **contract_values(start_date='2024-01-01', duration_months=12))

        assert record.status_on(date(2023, 12, 31)) == ContractStatus.A_VENIR
        assert record.status_on(date(2024, 6, 1)) == ContractStatus.ACTIF
        assert record.status_on(date(2025, 1, 1)) == ContractStatus.ACTIF
        assert record.status_on(date(2025, 1, 2)) == ContractStatus.EXPIRE

    def test_company_vat_and_key(self):
        record = CompanyRecord(row=2, name='Plomberie Express', vat_number='be 0123.456.789')

        assert record.vat_number == 'BE0123456789'
        assert record.natural_key == ('vat', 'BE0123456789')
        assert CompanyRecord(row=2, name='Plomberie Express').natural_key == ('name', 'plomberie express')

    def test_derived_company_reports_against_contacts(self):
        record = CompanyRecord(row=4, name='Nouvelle SPRL', derived_from_contacts=True)

        assert record.sheet == 'Contacts'

    def test_records_are_immutable(self):
        record = BuildingRecord(row=2, name='A', address='B', city='C', postal_code='1000')

        with pytest.raises(Exception):
            record.name = 'Other'


class TestBuildRecord:
    """Pydantic errors translated into row errors"""

    def test_required_field(self):
        record, errors = build_record(BuildingRecord, {'address': 'x', 'city': 'y', 'postal_code': '1000'}, 5)

        assert record is None
        assert len(errors) == 1
        error = errors[0]
        assert (error.sheet, error.row, error.field) == ('Buildings', 5, 'name')
        assert error.code == ImportErrorCode.REQUIRED_FIELD
        assert error.message == 'Field "name" is required'

    def test_invalid_postal_code(self):
        _, errors = build_record(BuildingRecord, {'name': 'A', 'address': 'x', 'city': 'y',
                                                  'postal_code': 'B-1000'}, 2)

        assert errors[0].code == ImportErrorCode.INVALID_FORMAT
        assert errors[0].message == 'Invalid format for "postal_code" (expected: 4 to 10 digits)'
        assert errors[0].value == 'B-1000'

    def test_invalid_enum_lists_allowed_values(self):
        _, errors = build_record(ContactRecord, {'name': 'A', 'role': 'plombier'}, 2)

        assert errors[0].code == ImportErrorCode.INVALID_ENUM
        assert 'locataire, prestataire, proprietaire' in errors[0].message

    def test_out_of_range(self):
        _, errors = build_record(LotRecord, {'reference': 'A1', 'floor': 300}, 2)

        assert errors[0].code == ImportErrorCode.OUT_OF_RANGE
        assert errors[0].message == '"floor" must be between -10 and 200'

    def test_invalid_number(self):
        _, errors = build_record(ContractRecord, contract_values(rent_amount='beaucoup'), 2)

        assert [e.code for e in errors] == [ImportErrorCode.INVALID_NUMBER]
        assert errors[0].field == 'rent_amount'

    def test_invalid_date(self):
        _, errors = build_record(ContractRecord, contract_values(start_date='31/02/2024'), 2)

        assert errors[0].code == ImportErrorCode.INVALID_DATE
        assert errors[0].field == 'start_date'

    def test_invalid_tenant_email(self):
        _, errors = build_record(ContractRecord, contract_values(tenant_emails='marie@example.com, nope'), 2)

        assert errors[0].code == ImportErrorCode.INVALID_FORMAT
        assert 'nope' in errors[0].message

    def test_too_long(self):
        _, errors = build_record(BuildingRecord, {'name': 'x' * 201, 'address': 'a', 'city': 'c',
                                                  'postal_code': '1000'}, 2)

        assert errors[0].code == ImportErrorCode.TOO_LONG
        assert errors[0].message == '"name" must not exceed 200 characters'

    def test_collects_every_field_error(self):
        _, errors = build_record(ContractRecord, {'lot_reference': 'LEO-A01', 'duration_months': 0,
                                                  'start_date': '2024-01-01', 'rent_amount': -1}, 7)

        assert {e.field for e in errors} == {'title', 'duration_months', 'rent_amount'}
        assert all(e.row == 7 for e in errors)
