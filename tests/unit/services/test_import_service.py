"""
Tests for ImportService - ordered phases, row isolation and error modes
"""

from unittest.mock import Mock

import pytest
from sqlalchemy.exc import SQLAlchemyError

from logging_config import ImportAuditLogger
from repositories.import_job_repository import ImportJobRepository
from services.import_constants import EntityType, ImportErrorCode
from services.import_service import ImportService
from services.import_types import ErrorMode, ImportProgress, ImportResult
from services.row_validator import RowValidator
from tests.fixtures.import_fixtures import InMemoryPersistenceAdapter, example_parse_result


@pytest.fixture
def import_data():
    return RowValidator().validate_all(example_parse_result()).data


@pytest.fixture
def audit_logger():
    return Mock(spec=ImportAuditLogger)


@pytest.fixture
def make_service(audit_logger):
    def factory(adapter, **kwargs):
        kwargs.setdefault('audit_logger', audit_logger)
        return ImportService(adapter, **kwargs)
    return factory


class TestImportService:

    def test_successful_run_commits_everything(self, make_service, memory_adapter, import_data):
        result = make_service(memory_adapter).execute(import_data)

        assert result.success is True
        assert result.rolled_back is False
        assert result.errors == ()
        assert result.summary == {
            'companies': {'created': 1, 'updated': 0, 'failed': 0},
            'contacts': {'created': 3, 'updated': 0, 'failed': 0},
            'buildings': {'created': 2, 'updated': 0, 'failed': 0},
            'lots': {'created': 4, 'updated': 0, 'failed': 0},
            'contracts': {'created': 1, 'updated': 0, 'failed': 0},
        }
        assert memory_adapter.begins == 1
        assert memory_adapter.commits == 1
        assert memory_adapter.rollbacks == 0
        assert memory_adapter.count(EntityType.LOTS) == 4

    def test_phases_run_in_dependency_order(self, make_service, memory_adapter, import_data):
        make_service(memory_adapter).execute(import_data)

        phases = [entity for entity, _ in memory_adapter.calls]
        assert phases == ['companies'] + ['contacts'] * 3 + ['buildings'] * 2 + ['lots'] * 4 + ['contracts']

    def test_progress_is_monotonic_and_ends_complete(self, make_service, memory_adapter, import_data):
        events = []

        make_service(memory_adapter).execute(import_data, progress_callback=events.append)

        assert [e.total_progress for e in events] == [0, 20, 40, 60, 80, 100]
        assert [e.phase_index for e in events] == [0, 1, 2, 3, 4, 4]
        assert [e.phase_name for e in events[:5]] == ['Sociétés', 'Contacts', 'Immeubles', 'Lots', 'Baux']
        assert not any(e.is_complete for e in events[:-1])
        assert events[-1].is_complete

    def test_created_contacts_are_reported(self, make_service, memory_adapter, import_data):
        result = make_service(memory_adapter).execute(import_data)

        assert [c.email for c in result.created_contacts] == [
            'marie.dubois@example.com', 'jeanpaul.garant@example.com', 'luc@plomberie-express.be',
        ]
        assert all(c.role for c in result.created_contacts)

    def test_second_run_updates_instead_of_creating(self, make_service, memory_adapter, import_data):
        first = make_service(memory_adapter).execute(import_data)
        second = make_service(memory_adapter).execute(import_data)

        for phase, counts in first.summary.items():
            assert second.summary[phase]['created'] == 0
            assert second.summary[phase]['updated'] == counts['created']
        assert second.created_contacts == ()

    def test_failed_row_does_not_stop_the_phase(self, make_service, import_data):
        adapter = InMemoryPersistenceAdapter(fail_rows=[('lots', 3)])

        result = make_service(adapter).execute(import_data, error_mode=ErrorMode.BEST_EFFORT)

        assert ('lots', 4) in adapter.calls
        assert ('contracts', 2) in adapter.calls
        assert result.summary['lots'] == {'created': 3, 'updated': 0, 'failed': 1}
        assert len(result.errors) == 1
        error = result.errors[0]
        assert (error.sheet, error.row, error.code) == ('Lots', 3, ImportErrorCode.PERSIST_ERROR)

    @pytest.mark.parametrize('error_mode', [ErrorMode.ALL_OR_NOTHING, ErrorMode.BEST_EFFORT])
    def test_contact_conflict_is_a_row_failure(self, make_service, error_mode):
        contacts = [
            ["Marie Dubois", "marie.dubois@example.com", "", "locataire", "", "", "", ""],
            ["Jean-Paul Garant", "jeanpaul.garant@example.com", "", "locataire", "", "", "", ""],
            ["Sophie Lambert", "sophie.lambert@example.com", "", "proprietaire", "", "", "", ""],
            ["Thomas Renard", "thomas.renard@example.com", "", "locataire", "", "", "", ""],
            ["Claire Martin", "claire.martin@example.com", "", "locataire", "", "", "", ""],
        ]
        data = RowValidator().validate_all(example_parse_result(contacts=contacts)).data
        adapter = InMemoryPersistenceAdapter(fail_rows=[('contacts', 4)])

        result = make_service(adapter).execute(data, error_mode=error_mode)

        assert result.success is False
        assert result.fatal_error is None
        assert result.summary['contacts'] == {'created': 4, 'updated': 0, 'failed': 1}
        assert [(e.sheet, e.row) for e in result.errors] == [('Contacts', 4)]
        # Later phases still run
        assert result.summary['buildings']['created'] == 2
        assert result.summary['lots']['created'] == 4
        assert ('contracts', 2) in adapter.calls

    def test_all_or_nothing_rolls_back_on_row_failure(self, make_service, import_data):
        adapter = InMemoryPersistenceAdapter(fail_rows=[('contracts', 2)])

        result = make_service(adapter).execute(import_data, error_mode=ErrorMode.ALL_OR_NOTHING)

        assert result.success is False
        assert result.rolled_back is True
        assert result.fatal_error is None
        assert result.created_contacts == ()
        assert adapter.rollbacks == 1
        assert adapter.commits == 0
        assert adapter.committed == {}

    def test_best_effort_keeps_successful_rows(self, make_service, import_data):
        adapter = InMemoryPersistenceAdapter(fail_rows=[('contracts', 2)])

        result = make_service(adapter).execute(import_data, error_mode=ErrorMode.BEST_EFFORT)

        assert result.success is False
        assert result.rolled_back is False
        assert result.error_mode == ErrorMode.BEST_EFFORT
        assert adapter.commits == 1
        assert adapter.count(EntityType.BUILDINGS) == 2
        assert adapter.count(EntityType.CONTRACTS) == 0
        assert len(result.created_contacts) == 3

    def test_fatal_error_aborts_and_always_rolls_back(self, make_service, import_data):
        adapter = InMemoryPersistenceAdapter(raise_rows=[('buildings', 2)])
        events = []

        result = make_service(adapter).execute(import_data, error_mode=ErrorMode.BEST_EFFORT,
                                               progress_callback=events.append)

        assert result.success is False
        assert result.rolled_back is True
        assert 'datastore unavailable' in result.fatal_error
        assert not any(entity in ('lots', 'contracts') for entity, _ in adapter.calls)
        assert result.errors[-1].code == ImportErrorCode.UNKNOWN
        assert (result.errors[-1].sheet, result.errors[-1].row) == ('Buildings', 2)
        assert not any(e.is_complete for e in events)
        assert adapter.commits == 0

    def test_progress_listener_failure_ends_the_run(self, make_service, memory_adapter, import_data):
        def listener(progress):
            if progress.phase == EntityType.BUILDINGS:
                raise RuntimeError("listener broke")

        result = make_service(memory_adapter).execute(import_data, progress_callback=listener)

        assert result.fatal_error == "listener broke"
        assert result.rolled_back is True
        assert result.summary['contacts']['created'] == 3
        assert result.summary['buildings']['created'] == 0

    def test_listener_failure_on_completion_keeps_the_result(self, make_service, memory_adapter, import_data):
        def listener(progress):
            if progress.is_complete:
                raise RuntimeError("listener broke")

        result = make_service(memory_adapter).execute(import_data, progress_callback=listener)

        assert result.success is True
        assert result.rolled_back is False
        assert memory_adapter.count(EntityType.LOTS) == 4

    def test_iter_execute_ends_with_result(self, make_service, memory_adapter, import_data):
        events = list(make_service(memory_adapter).iter_execute(import_data, error_mode='best_effort'))

        assert all(isinstance(e, ImportProgress) for e in events[:-1])
        assert isinstance(events[-1], ImportResult)
        assert events[-1].error_mode == ErrorMode.BEST_EFFORT

    def test_row_callback_receives_outcomes(self, make_service, import_data):
        adapter = InMemoryPersistenceAdapter(fail_rows=[('buildings', 3)])
        seen = []

        make_service(adapter).execute(import_data, error_mode=ErrorMode.BEST_EFFORT,
                                      row_callback=lambda phase, record, outcome: seen.append(
                                          (phase, record.row, outcome is not None)))

        assert (EntityType.BUILDINGS, 3, False) in seen
        assert (EntityType.BUILDINGS, 2, True) in seen
        assert len(seen) == import_data.total

    def test_duration_uses_the_clock(self, make_service, memory_adapter, import_data):
        clock = Mock(side_effect=[100.0, 100.25])

        result = make_service(memory_adapter, clock=clock).execute(import_data)

        assert result.duration_ms == 250

    def test_audit_trail(self, make_service, memory_adapter, import_data, audit_logger):
        make_service(memory_adapter).execute(import_data, filename='seido.xlsx')

        audit_logger.log_import_started.assert_called_once_with('seido.xlsx', 11, 'all_or_nothing', None)
        assert audit_logger.log_phase_started.call_count == 5
        audit_logger.log_import_finished.assert_called_once()


class TestImportJobHistory:

    @pytest.fixture
    def job_repository(self):
        repository = Mock(spec=ImportJobRepository)
        repository.start_job.return_value = Mock(id=7)
        return repository

    def test_job_is_recorded(self, make_service, memory_adapter, import_data, job_repository):
        result = make_service(memory_adapter, import_job_repository=job_repository).execute(
            import_data, filename='seido.xlsx')

        assert result.job_id == 7
        job_repository.start_job.assert_called_once_with('seido.xlsx', 11, 'all_or_nothing')
        kwargs = job_repository.finish_job.call_args.kwargs
        assert job_repository.finish_job.call_args.args == (7,)
        assert kwargs['status'] == 'completed'
        assert kwargs['success_count'] == 11
        assert kwargs['error_count'] == 0

    def test_rolled_back_job_status(self, make_service, import_data, job_repository):
        adapter = InMemoryPersistenceAdapter(fail_rows=[('contacts', 2)])

        make_service(adapter, import_job_repository=job_repository).execute(import_data)

        kwargs = job_repository.finish_job.call_args.kwargs
        assert kwargs['status'] == 'rolled_back'
        assert kwargs['errors'][0]['sheet'] == 'Contacts'

    def test_history_failure_does_not_block_the_import(self, make_service, memory_adapter, import_data,
                                                       job_repository):
        job_repository.start_job.side_effect = SQLAlchemyError("history table locked")

        result = make_service(memory_adapter, import_job_repository=job_repository).execute(import_data)

        assert result.success is True
        assert result.job_id is None
        job_repository.finish_job.assert_not_called()
