"""
Natural key lookups of the repositories against in-memory SQLite
"""

import pytest

from repositories import (
    BuildingRepository,
    ContactInvitationRepository,
    ContactRepository,
    ImportJobRepository,
    LotRepository,
)
from seido_database import ContactInvitation
from utils.datetime_utils import utc_in_days

pytestmark = pytest.mark.integration


@pytest.fixture
def buildings(db_session):
    return BuildingRepository(db_session)


@pytest.fixture
def lots(db_session):
    return LotRepository(db_session)


@pytest.fixture
def contacts(db_session):
    return ContactRepository(db_session)


def make_building(repository, name):
    return repository.create(name=name, address='8 Place du Grand Sablon', city='Bruxelles', postal_code='1000')


class TestInsensitiveLookups:

    def test_building_name_ignores_case_and_spaces(self, buildings):
        building = make_building(buildings, 'Résidence Léopold')

        assert buildings.find_by_name('  résidence LÉOPOLD ') is building
        assert buildings.find_by_name('Résidence Louise') is None
        assert buildings.find_by_name('') is None

    def test_lot_reference_is_scoped_to_its_building(self, buildings, lots):
        leopold = make_building(buildings, 'Résidence Léopold')
        sablon = make_building(buildings, 'Le Sablon')
        in_leopold = lots.create(reference='A01', building_id=leopold.id, category='appartement')
        independent = lots.create(reference='a01', building_id=None, category='garage',
                                  street='Rue Haute 3', city='Bruxelles')

        assert lots.find_by_reference_and_building('A01', leopold.id) is in_leopold
        assert lots.find_by_reference_and_building('A01', None) is independent
        assert lots.find_by_reference_and_building('A01', sablon.id) is None

    def test_lot_reference_across_buildings_oldest_first(self, buildings, lots):
        leopold = make_building(buildings, 'Résidence Léopold')
        sablon = make_building(buildings, 'Le Sablon')
        first = lots.create(reference='B12', building_id=leopold.id, category='appartement')
        second = lots.create(reference='b12', building_id=sablon.id, category='appartement')

        assert lots.find_by_reference('B12') == [first, second]

    def test_contact_with_email(self, contacts):
        contact = contacts.create(name='Marie Dupont', email='marie.dupont@example.be', role='locataire')

        assert contacts.find_by_email('Marie.Dupont@Example.be') is contact
        assert contacts.find_by_email(None) is None

    def test_contact_without_email_matches_name_and_role(self, contacts):
        tenant = contacts.create(name='Jean Peeters', role='locataire')
        contacts.create(name='Jean Peeters', role='prestataire')
        contacts.create(name='Jean Peeters', email='jean@example.be', role='locataire')

        assert contacts.find_without_email('jean peeters', 'locataire') is tenant
        assert contacts.find_without_email('Jean Peeters', 'proprietaire') is None

    def test_upsert_updates_the_existing_row(self, buildings):
        original = make_building(buildings, 'Le Sablon')

        building, created = buildings.upsert(buildings.find_by_name('le sablon'), name='Le Sablon',
                                              city='Ixelles')

        assert created is False
        assert building.id == original.id
        assert buildings.find_by_name('Le Sablon').city == 'Ixelles'


class TestInvitationsAndJobs:

    def test_pending_invitation_ignores_used_and_expired(self, db_session, contacts):
        contact = contacts.create(name='Marie Dupont', email='marie.dupont@example.be', role='locataire')
        repository = ContactInvitationRepository(db_session)
        repository.create(contact_id=contact.id, email=contact.email, token='used',
                          expires_at=utc_in_days(7), used=True)
        repository.create(contact_id=contact.id, email=contact.email, token='expired',
                          expires_at=utc_in_days(-1))

        assert repository.find_pending_for_contact(contact.id) is None

        pending = repository.create(contact_id=contact.id, email=contact.email, token='pending',
                                    expires_at=utc_in_days(7))
        db_session.commit()
        db_session.expire_all()

        found = repository.find_pending_for_contact(contact.id)
        assert isinstance(found, ContactInvitation)
        assert found.id == pending.id

    def test_recent_jobs_newest_first(self, db_session):
        repository = ImportJobRepository(db_session)
        first = repository.start_job('january.xlsx', 10, 'all_or_nothing')
        second = repository.start_job('february.xlsx', 4, 'best_effort')

        repository.finish_job(first.id, 'completed', 10, 0, {'lots': {'created': 10}}, [], 120)

        assert [job.id for job in repository.get_recent(limit=5)] == [second.id, first.id]
        assert repository.get_by_id(first.id).to_dict()['status'] == 'completed'
        assert repository.get_by_id(first.id).completed_at is not None
