"""
ImportService - runs the ordered import phases over validated records.

Phases run strictly in order (companies, contacts, buildings, lots,
contracts) because later phases look up entities created by earlier ones
by natural key. Rows inside a phase run one after another. A failing row
is recorded and the run goes on; only an exception escaping the row
handling aborts the remaining phases.
"""

import logging
import time
from typing import Callable, Dict, Generator, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from logging_config import ImportAuditLogger, import_audit_logger
from services.import_constants import (
    EntityType,
    ErrorMessages,
    IMPORT_PHASES,
    ImportErrorCode,
    PHASE_LABELS,
    SHEET_NAMES,
)
from services.import_persistence import PersistenceAdapter, PersistError, UpsertOutcome
from services.import_schemas import ImportRecord
from services.import_types import (
    CreatedContact,
    EntityCounts,
    ErrorMode,
    ImportData,
    ImportProgress,
    ImportResult,
    ValidationError,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ImportProgress], None]
RowCallback = Callable[[EntityType, ImportRecord, Optional[UpsertOutcome]], None]
ImportEvent = Union[ImportProgress, ImportResult]


class ImportService:
    """Executes an import run against a PersistenceAdapter"""

    def __init__(self,
                 persistence_adapter: PersistenceAdapter,
                 import_job_repository=None,
                 audit_logger: Optional[ImportAuditLogger] = None,
                 clock: Callable[[], float] = time.monotonic,
                 phase_labels: Optional[Dict[EntityType, str]] = None):
        """
        Args:
            persistence_adapter: Datastore boundary used for every row
            import_job_repository: Optional ImportJobRepository for the history
            audit_logger: Structured audit logger
            clock: Monotonic clock in seconds, used for the run duration
            phase_labels: Localized phase names
        """
        self.persistence_adapter = persistence_adapter
        self.import_job_repository = import_job_repository
        self.audit_logger = audit_logger or import_audit_logger
        self.clock = clock
        self.phase_labels = phase_labels or PHASE_LABELS

    def execute(self,
                data: ImportData,
                error_mode: ErrorMode = ErrorMode.ALL_OR_NOTHING,
                filename: Optional[str] = None,
                progress_callback: Optional[ProgressCallback] = None,
                row_callback: Optional[RowCallback] = None) -> ImportResult:
        """
        Run every phase and return the ImportResult.

        Args:
            data: Validated records
            error_mode: Whether a run with failures is rolled back or committed
            filename: Source file name for the history
            progress_callback: Called at each phase boundary and on completion
            row_callback: Called after each row with its outcome (None when it failed)

        Returns:
            ImportResult, also when the run failed
        """
        events = self.iter_execute(data, error_mode=error_mode, filename=filename,
                                   row_callback=row_callback)
        event = next(events)
        while not isinstance(event, ImportResult):
            try:
                if progress_callback:
                    progress_callback(event)
            except Exception as e:
                # Surface listener failures inside the run so they end it cleanly
                event = events.throw(e)
                continue
            event = next(events)
        events.close()
        return event

    def iter_execute(self,
                     data: ImportData,
                     error_mode: ErrorMode = ErrorMode.ALL_OR_NOTHING,
                     filename: Optional[str] = None,
                     row_callback: Optional[RowCallback] = None) -> Generator[ImportEvent, None, None]:
        """
        Run the import as a generator.

        Yields an ImportProgress at every phase boundary, then a final
        ImportProgress with is_complete set, then the ImportResult.
        """
        error_mode = ErrorMode.from_value(error_mode)
        started = self.clock()
        summary = {phase: EntityCounts() for phase in IMPORT_PHASES}
        errors: List[ValidationError] = []
        created_contacts: List[CreatedContact] = []
        fatal_error = None
        current_phase: Optional[EntityType] = None
        current_record: Optional[ImportRecord] = None

        job_id = self._start_job(filename, data.total, error_mode)
        self.audit_logger.log_import_started(filename, data.total, error_mode.value, job_id)

        try:
            self.persistence_adapter.begin()
            for index, phase in enumerate(IMPORT_PHASES):
                current_phase, current_record = phase, None
                records = data.records_for(phase)
                yield self._progress(phase, index)
                self.audit_logger.log_phase_started(phase.value, index, len(records))

                for record in records:
                    current_record = record
                    outcome = self._import_row(phase, record, summary[phase], errors)
                    if outcome is not None and phase == EntityType.CONTACTS and outcome.created:
                        created_contacts.append(CreatedContact(
                            id=outcome.id,
                            name=outcome.name or record.name,
                            email=outcome.email,
                            role=outcome.role,
                        ))
                    if row_callback:
                        row_callback(phase, record, outcome)
        except Exception as e:
            logger.exception(f"Import aborted during {current_phase.value if current_phase else 'setup'}: {e}")
            fatal_error = str(e)
            errors.append(ValidationError(
                sheet=current_record.sheet if current_record else (
                    SHEET_NAMES[current_phase] if current_phase else ''),
                row=current_record.row if current_record else 0,
                message=ErrorMessages.unknown(fatal_error),
                code=ImportErrorCode.UNKNOWN,
            ))

        success = fatal_error is None and not errors
        rolled_back = False
        try:
            # A fatal error always discards the run; row failures only in all-or-nothing mode
            if success or (error_mode == ErrorMode.BEST_EFFORT and fatal_error is None):
                self.persistence_adapter.commit()
            else:
                self.persistence_adapter.rollback()
                rolled_back = True
        except Exception as e:
            logger.exception(f"Failed to finalize import: {e}")
            fatal_error = fatal_error or str(e)
            success = False
            errors.append(ValidationError(sheet='', row=0, message=ErrorMessages.unknown(str(e)),
                                          code=ImportErrorCode.UNKNOWN))
            self._safe_rollback()
            rolled_back = True

        if fatal_error is None:
            try:
                yield ImportProgress(
                    phase=IMPORT_PHASES[-1],
                    phase_index=len(IMPORT_PHASES) - 1,
                    total_phases=len(IMPORT_PHASES),
                    phase_name=self.phase_labels[IMPORT_PHASES[-1]],
                    total_progress=100,
                    is_complete=True,
                )
            except Exception as e:
                # The batch is already committed or rolled back
                logger.error(f"Progress listener failed after the import finished: {e}")

        duration_ms = int((self.clock() - started) * 1000)
        summary_dict = {phase.value: counts.to_dict() for phase, counts in summary.items()}
        self._finish_job(job_id, success, rolled_back, summary_dict, errors, duration_ms)
        self.audit_logger.log_import_finished(success, summary_dict, duration_ms, rolled_back, job_id)

        yield ImportResult(
            success=success,
            summary=summary_dict,
            errors=tuple(errors),
            created_contacts=() if rolled_back else tuple(created_contacts),
            duration_ms=duration_ms,
            error_mode=error_mode,
            rolled_back=rolled_back,
            fatal_error=fatal_error,
            job_id=job_id,
        )

    def _import_row(self, phase: EntityType, record: ImportRecord, counts: EntityCounts,
                    errors: List[ValidationError]) -> Optional[UpsertOutcome]:
        """Upsert one row; failures are tallied and recorded, never raised"""
        try:
            result = self.persistence_adapter.upsert(phase, record, record.natural_key)
            if result.is_failure:
                raise PersistError(result.error, code=result.error_code or ImportErrorCode.PERSIST_ERROR)
        except PersistError as e:
            counts.failed += 1
            errors.append(ValidationError(
                sheet=record.sheet,
                row=record.row,
                message=e.message,
                code=e.code,
            ))
            self.audit_logger.log_row_failed(record.sheet, record.row, e.code, e.message)
            return None

        outcome = result.data
        if outcome.created:
            counts.created += 1
        else:
            counts.updated += 1
        return outcome

    def _progress(self, phase: EntityType, index: int) -> ImportProgress:
        total = len(IMPORT_PHASES)
        return ImportProgress(
            phase=phase,
            phase_index=index,
            total_phases=total,
            phase_name=self.phase_labels[phase],
            total_progress=round(index / total * 100),
        )

    def _safe_rollback(self) -> None:
        try:
            self.persistence_adapter.rollback()
        except Exception as e:
            logger.error(f"Rollback after failed commit also failed: {e}")

    # Import history

    def _start_job(self, filename: Optional[str], total_rows: int, error_mode: ErrorMode) -> Optional[int]:
        if self.import_job_repository is None:
            return None
        try:
            job = self.import_job_repository.start_job(filename, total_rows, error_mode.value)
            return job.id
        except SQLAlchemyError as e:
            logger.error(f"Could not record import job for {filename}: {e}")
            return None

    def _finish_job(self, job_id: Optional[int], success: bool, rolled_back: bool,
                    summary: Dict[str, Dict[str, int]], errors: List[ValidationError],
                    duration_ms: int) -> None:
        if self.import_job_repository is None or job_id is None:
            return
        if success:
            status = 'completed'
        elif rolled_back:
            status = 'rolled_back'
        else:
            status = 'failed'
        try:
            self.import_job_repository.finish_job(
                job_id,
                status=status,
                success_count=sum(counts['created'] + counts['updated'] for counts in summary.values()),
                error_count=len(errors),
                summary=summary,
                errors=[error.to_dict() for error in errors],
                duration_ms=duration_ms,
            )
        except SQLAlchemyError as e:
            logger.error(f"Could not update import job {job_id}: {e}")
