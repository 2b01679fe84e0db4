"""
Import routes - HTTP surface of the bulk import pipeline.

All endpoints answer JSON except the template download (xlsx) and the
streamed execution (text/event-stream).
"""

import base64
import io
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from celery.result import AsyncResult
from flask import Blueprint, Response, current_app, jsonify, request, send_file, stream_with_context, url_for
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from logging_config import get_logger
from services.common.result import Result
from services.import_constants import ImportErrorCode
from services.import_types import (
    CreatedContact,
    ErrorMode,
    ImportProgress,
    ImportResult,
    ImportStats,
    ParseResult,
    UploadedFile,
)

logger = get_logger(__name__)

import_bp = Blueprint('import', __name__)

STATUS_BY_CODE = {
    ImportErrorCode.FILE_REQUIRED: 400,
    ImportErrorCode.UNSUPPORTED_FORMAT: 400,
    ImportErrorCode.FILE_TOO_LARGE: 413,
}


# Helpers

def _error_response(error: str, code: str, status: Optional[int] = None, **extra):
    payload = {'success': False, 'error': error, 'code': code}
    payload.update(extra)
    return jsonify(payload), status or STATUS_BY_CODE.get(code, 422)


def _failure_response(result: Result):
    return _error_response(result.error, result.error_code or ImportErrorCode.UNKNOWN,
                           details=result.metadata or None)


def _read_upload() -> Result[UploadedFile]:
    """Read the multipart 'file' field and run the extension and size checks"""
    storage = request.files.get('file')
    if storage is None or not storage.filename:
        return Result.failure("No file selected", code=ImportErrorCode.FILE_REQUIRED)

    upload = UploadedFile(filename=storage.filename, content=storage.read(),
                          content_type=storage.mimetype)
    check = current_app.services.get('sheet_parser').check_file(upload.filename, upload.size)
    if check.is_failure:
        return Result.failure(check.error, code=check.error_code, metadata=check.metadata)
    return Result.success(upload)


def _parse_upload() -> Tuple[Optional[UploadedFile], Result[ParseResult]]:
    upload_result = _read_upload()
    if upload_result.is_failure:
        return None, upload_result

    upload = upload_result.data
    parse_result = current_app.services.get('sheet_parser').parse(upload.content, upload.filename)
    if parse_result.is_success and ImportStats.from_parse_result(parse_result.data).total == 0:
        return upload, Result.failure(
            "No data found in the file. Check the sheet names against the template",
            code=ImportErrorCode.NO_DATA
        )
    return upload, parse_result


def _json_value(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def _sheet_preview(parse_result: ParseResult, limit: int) -> list:
    return [
        {
            'sheet': sheet.sheet,
            'source_name': sheet.source_name,
            'headers': list(sheet.headers),
            'row_count': sheet.row_count,
            'data_row_count': sheet.data_row_count,
            'preview': [
                {key: _json_value(value) for key, value in row.items()}
                for row in sheet.rows[:limit]
            ],
        }
        for sheet in parse_result.sheets()
    ]


def _sse(event: str, data: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def _error_mode_param() -> Optional[ErrorMode]:
    value = request.values.get('error_mode') or current_app.config.get('IMPORT_ERROR_MODE')
    try:
        return ErrorMode(value)
    except ValueError:
        return None


# Endpoints

@import_bp.route('/template')
def download_template():
    """Download the xlsx template (full workbook or a single entity)"""
    template_type = request.args.get('type', 'full')
    template_service = current_app.services.get('import_template')
    result = template_service.build_template(template_type)
    if result.is_failure:
        return _error_response(result.error, result.error_code, 400)

    return send_file(
        io.BytesIO(result.data),
        mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
        as_attachment=True,
        download_name=result.metadata['filename'],
    )


@import_bp.route('/parse', methods=['POST'])
def parse_file():
    """Parse an upload and return per-sheet counts and preview rows"""
    upload, result = _parse_upload()
    if result.is_failure:
        return _failure_response(result)

    parse_result = result.data
    return jsonify({
        'success': True,
        'filename': upload.filename,
        'stats': ImportStats.from_parse_result(parse_result).to_dict(),
        'sheets': _sheet_preview(parse_result, current_app.config.get('IMPORT_PREVIEW_ROWS', 10)),
    })


@import_bp.route('/validate', methods=['POST'])
def validate_file():
    """Parse and validate an upload; nothing is written"""
    upload, result = _parse_upload()
    if result.is_failure:
        return _failure_response(result)

    parse_result = result.data
    validation = current_app.services.get('row_validator').validate_all(parse_result)
    stats = ImportStats.from_parse_result(parse_result).to_dict()
    errors = [error.to_dict() for error in validation.errors]

    if not validation.is_valid:
        return _error_response(
            f"{len(errors)} error(s) found. Fix the file and upload it again",
            ImportErrorCode.VALIDATION_FAILED,
            422,
            is_valid=False,
            stats=stats,
            errors=errors,
        )

    return jsonify({'success': True, 'is_valid': True, 'stats': stats, 'errors': []})


@import_bp.route('/execute-stream', methods=['POST'])
def execute_stream():
    """
    Validate then import, streaming progress as server-sent events.

    Events: `progress` at each phase, `result` with the ImportResult, or
    `error` when the run could not produce a result.
    """
    error_mode = _error_mode_param()
    if error_mode is None:
        return _error_response("error_mode must be 'all_or_nothing' or 'best_effort'",
                               ImportErrorCode.INVALID_ENUM, 400)

    upload, result = _parse_upload()
    if result.is_failure:
        return _failure_response(result)

    validation = current_app.services.get('row_validator').validate_all(result.data)
    if not validation.is_valid:
        return _error_response(
            f"{len(validation.errors)} error(s) found. Fix the file and upload it again",
            ImportErrorCode.VALIDATION_FAILED,
            422,
            errors=[error.to_dict() for error in validation.errors],
        )

    import_service = current_app.services.get('import_service')
    filename = upload.filename

    def generate():
        try:
            for event in import_service.iter_execute(validation.data, error_mode=error_mode, filename=filename):
                if isinstance(event, ImportProgress):
                    yield _sse('progress', event.to_dict())
                elif isinstance(event, ImportResult):
                    yield _sse('result', event.to_dict())
        except Exception as e:
            logger.exception("Streamed import failed", filename=filename, error=str(e))
            yield _sse('error', {'success': False, 'error': str(e), 'code': ImportErrorCode.UNKNOWN})

    return Response(
        stream_with_context(generate()),
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )


@import_bp.route('/execute', methods=['POST'])
def execute_async():
    """Queue the import as a Celery task"""
    from tasks.import_tasks import execute_import_task

    error_mode = _error_mode_param()
    if error_mode is None:
        return _error_response("error_mode must be 'all_or_nothing' or 'best_effort'",
                               ImportErrorCode.INVALID_ENUM, 400)

    upload_result = _read_upload()
    if upload_result.is_failure:
        return _failure_response(upload_result)

    upload = upload_result.data
    task = execute_import_task.delay(
        base64.b64encode(upload.content).decode('ascii'),
        upload.filename,
        error_mode.value,
    )
    logger.info("Import task queued", task_id=task.id, filename=upload.filename)
    return jsonify({
        'success': True,
        'task_id': task.id,
        'status_url': url_for('import.job_status', task_id=task.id),
    }), 202


@import_bp.route('/jobs/<task_id>')
def job_status(task_id):
    """State of a queued import task"""
    task = AsyncResult(task_id, app=current_app.extensions['celery'])
    response = {'task_id': task_id, 'state': task.state}

    if task.state == 'PROGRESS':
        response['progress'] = task.info
    elif task.state == 'SUCCESS':
        response['result'] = task.result
    elif task.state == 'FAILURE':
        response['error'] = str(task.info)

    return jsonify(response)


@import_bp.route('/history')
def history():
    """Most recent import runs"""
    limit = request.args.get('limit', 20, type=int)
    limit = max(1, min(limit, 100))
    jobs = current_app.services.get('import_job_repository').get_recent(limit=limit)
    return jsonify({'success': True, 'jobs': [job.to_dict() for job in jobs]})


@import_bp.route('/invitations', methods=['POST'])
def send_invitations():
    """Invite contacts created by an import: {contacts: [{id, email, name}]}"""
    payload = request.get_json(silent=True) or {}
    items = payload.get('contacts')
    if not isinstance(items, list) or not items:
        return _error_response("'contacts' must be a non-empty list", ImportErrorCode.REQUIRED_FIELD, 400)

    contacts = []
    for item in items:
        if not isinstance(item, dict) or not isinstance(item.get('id'), int):
            return _error_response("Each contact needs an integer 'id'", ImportErrorCode.INVALID_FORMAT, 400)
        contacts.append(CreatedContact(
            id=item['id'],
            name=item.get('name') or '',
            email=item.get('email'),
            role=item.get('role'),
        ))

    outcome = current_app.services.get('contact_invitation').invite_many(contacts)
    return jsonify({
        'success': not outcome['failed'],
        'sent': outcome['sent'],
        'failed': outcome['failed'],
    })


@import_bp.errorhandler(SQLAlchemyError)
def handle_database_error(error):
    logger.error("Database error in import route", error=str(error))
    return _error_response("Database error", ImportErrorCode.PERSIST_ERROR, 500)


@import_bp.errorhandler(Exception)
def handle_unexpected_error(error):
    if isinstance(error, HTTPException):
        if error.code == 413:
            return _error_response("File too large", ImportErrorCode.FILE_TOO_LARGE, 413)
        return _error_response(error.description, error.name.upper().replace(' ', '_'), error.code)
    logger.exception("Unexpected error in import route", error=str(error))
    return _error_response("Internal server error", ImportErrorCode.UNKNOWN, 500)
