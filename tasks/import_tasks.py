"""
Celery tasks for bulk imports.

The task replays the wizard (parse, validate, execute) inside the Flask
application context and reports every phase through the task state, so
the HTTP layer can poll `/api/import/jobs/<task_id>`.
"""

import base64
import binascii
import logging
from typing import Any, Dict, Optional

from celery import shared_task
from flask import current_app

from services.import_types import ErrorMode, UploadedFile, WizardState, WizardStep

logger = logging.getLogger(__name__)


@shared_task(bind=True, name='tasks.import_tasks.execute_import_task')
def execute_import_task(self, file_b64: str, filename: str,
                        error_mode: Optional[str] = None) -> Dict[str, Any]:
    """
    Run a complete import in the background.

    Args:
        file_b64: File content, base64 encoded (JSON serializer friendly)
        filename: Original filename for format detection
        error_mode: 'all_or_nothing' or 'best_effort'; defaults to IMPORT_ERROR_MODE

    Returns:
        The ImportResult as a dict, or {success: False, stage, error, errors}
        when the file does not get past parsing or validation
    """
    try:
        content = base64.b64decode(file_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.error(f"Import task received an invalid payload for {filename}: {e}")
        return {'success': False, 'stage': 'upload', 'error': 'Invalid file payload', 'errors': []}

    mode = ErrorMode.from_value(error_mode or current_app.config.get('IMPORT_ERROR_MODE'))
    wizard = current_app.services.get('import_wizard')
    wizard.error_mode = mode

    self.update_state(state='PROGRESS', meta={'stage': 'parsing', 'total_progress': 0})

    def report_progress(state: WizardState):
        if state.step == WizardStep.PROGRESS and state.import_progress is not None:
            meta = state.import_progress.to_dict()
            meta['stage'] = 'importing'
            self.update_state(state='PROGRESS', meta=meta)

    wizard.set_file(UploadedFile(filename=filename, content=content))
    wizard.parse_file()
    if wizard.state.step != WizardStep.PREVIEW:
        return {'success': False, 'stage': 'parse', 'error': wizard.state.error, 'errors': []}

    self.update_state(state='PROGRESS', meta={'stage': 'validating', 'total_progress': 0})
    wizard.validate_data()
    if wizard.errors:
        logger.info(f"Import of {filename} stopped: {len(wizard.errors)} validation error(s)")
        return {
            'success': False,
            'stage': 'validate',
            'error': wizard.state.error,
            'stats': wizard.stats.to_dict(),
            'errors': [error.to_dict() for error in wizard.errors],
        }

    unsubscribe = wizard.subscribe(report_progress)
    try:
        wizard.proceed_to_confirm()
        wizard.execute_import()
    finally:
        unsubscribe()

    result = wizard.state.import_result
    logger.info(f"Import task for {filename} finished (success={result.success}, job={result.job_id})")
    return result.to_dict()
