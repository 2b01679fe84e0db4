# logging_config.py

import logging
import sys
from typing import Any, Dict, Optional

import structlog
from flask import has_request_context, request

# Libraries that log every request or cell at INFO
NOISY_LOGGERS = ("werkzeug", "openpyxl", "celery", "kombu")


def add_request_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Tag entries emitted while serving a request; request_id comes from the bound contextvars"""
    if has_request_context():
        event_dict.setdefault("remote_addr", request.remote_addr)
        event_dict.setdefault("path", request.path)
    return event_dict


def setup_logging(app_name: str = "seido-import", log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog and the stdlib root logger.

    Services log through logging.getLogger(__name__); routes, tasks and the
    audit trail log through structlog. Both end up on stdout at `log_level`.

    Args:
        app_name: Application name for log identification
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_logs: JSON lines (production) instead of coloured console output
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_request_context,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s",
                        stream=sys.stdout, level=level)
    logging.getLogger(app_name).setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = None) -> structlog.BoundLogger:
    return structlog.get_logger(name or __name__)


class ImportAuditLogger:
    """
    Audit trail of import runs and invitations.

    Every entry carries an `event_type` so the lines can be filtered out of
    the application log.
    """

    def __init__(self):
        self.logger = get_logger("import.audit")

    def _emit(self, level: str, message: str, event_type: str, **fields) -> None:
        getattr(self.logger, level)(message, event_type=event_type, **fields)

    def log_import_started(self, filename: Optional[str], total_rows: int, error_mode: str,
                           job_id: Optional[int] = None):
        self._emit("info", "Import started", "import_started", filename=filename,
                   total_rows=total_rows, error_mode=error_mode, job_id=job_id)

    def log_phase_started(self, phase: str, phase_index: int, row_count: int):
        self._emit("info", "Import phase started", "import_phase_started", phase=phase,
                   phase_index=phase_index, row_count=row_count)

    def log_row_failed(self, sheet: str, row: int, code: Optional[str], message: str):
        self._emit("warning", "Import row failed", "import_row_failed", sheet=sheet, row=row,
                   code=code, error=message)

    def log_import_finished(self, success: bool, summary: Dict[str, Any], duration_ms: int,
                            rolled_back: bool, job_id: Optional[int] = None):
        self._emit("info", "Import finished", "import_finished", success=success, summary=summary,
                   duration_ms=duration_ms, rolled_back=rolled_back, job_id=job_id)

    def log_invitation(self, contact_id: int, email: str, success: bool, error: Optional[str] = None):
        self._emit("info" if success else "warning", "Contact invitation", "invitation_sent",
                   contact_id=contact_id, email=email, success=success, error=error)


import_audit_logger = ImportAuditLogger()
