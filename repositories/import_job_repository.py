"""
ImportJobRepository - Data access layer for the import history
Job rows are committed on their own so they survive a rolled back import.
"""

from typing import Any, Dict, List, Optional
from repositories.base_repository import BaseRepository, SortOrder
from seido_database import ImportJob
from utils.datetime_utils import utc_now
import logging

logger = logging.getLogger(__name__)


class ImportJobRepository(BaseRepository[ImportJob]):
    """Repository for ImportJob data access"""

    def __init__(self, session):
        super().__init__(session, ImportJob)

    def start_job(self, filename: Optional[str], total_rows: int, error_mode: str) -> ImportJob:
        """Create and commit a job in the 'importing' state"""
        job = self.create(
            filename=filename,
            total_rows=total_rows,
            error_mode=error_mode,
            status='importing',
        )
        self.commit()
        return job

    def finish_job(self, job_id: int, status: str, success_count: int, error_count: int,
                   summary: Dict[str, Any], errors: List[Dict[str, Any]],
                   duration_ms: int) -> Optional[ImportJob]:
        """Record the outcome of a job and commit"""
        job = self.get_by_id(job_id)
        if job is None:
            logger.warning(f"Import job {job_id} not found when finishing")
            return None
        self.update(
            job,
            status=status,
            success_count=success_count,
            error_count=error_count,
            summary=summary,
            errors=errors,
            duration_ms=duration_ms,
            completed_at=utc_now(),
        )
        self.commit()
        return job

    def get_recent(self, limit: int = 20) -> List[ImportJob]:
        return self.get_all(order_by='id', order=SortOrder.DESC, limit=limit)
