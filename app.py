# app.py

from flask import Flask, g, jsonify, request
from config import get_config
from extensions import db, migrate, enable_sqlite_savepoints
import os
import uuid
import structlog
from werkzeug.middleware.proxy_fix import ProxyFix
from logging_config import setup_logging, get_logger

logger = get_logger(__name__)


def init_sentry(app):
    """Report unhandled errors to Sentry when a DSN is configured in production"""
    sentry_dsn = os.environ.get('SENTRY_DSN')
    if not sentry_dsn or app.config.get('FLASK_ENV') != 'production':
        return

    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
    from sentry_sdk.integrations.celery import CeleryIntegration

    sentry_sdk.init(
        dsn=sentry_dsn,
        integrations=[FlaskIntegration(transaction_style='endpoint'), SqlalchemyIntegration(),
                      CeleryIntegration()],
        traces_sample_rate=0.1,
        environment='production',
        release=os.environ.get('GIT_SHA', 'unknown')
    )
    logger.info("Sentry error tracking initialized")


def create_app(config_name=None, test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__)

    config_class = get_config(config_name)
    app.config.from_object(config_class)

    if test_config:
        app.config.update(test_config)

    config_class.init_app(app)
    setup_logging(app_name="seido-import", log_level=app.config['LOG_LEVEL'],
                  json_logs=app.config['JSON_LOGS'])
    init_sentry(app)

    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    db.init_app(app)
    migrate.init_app(app, db)

    if app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite'):
        with app.app_context():
            enable_sqlite_savepoints(db.engine)

    app.services = _build_registry(app)

    # Celery bound to this app; tasks run inside its context
    from celery_config import create_celery_app
    celery = create_celery_app(app.import_name, app)
    celery.set_default()
    app.extensions['celery'] = celery

    @app.before_request
    def bind_request_id():
        g.request_id = request.headers.get('X-Request-ID') or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=g.request_id)
        logger.debug("Request started", method=request.method, path=request.path)

    @app.after_request
    def log_response(response):
        response.headers['X-Request-ID'] = getattr(g, 'request_id', '')
        logger.info("Request completed", method=request.method, path=request.path,
                    status_code=response.status_code)
        return response

    def error_response(message, code, status):
        return jsonify({'success': False, 'error': message, 'code': code}), status

    @app.errorhandler(404)
    def not_found_error(error):
        logger.warning("Route not found", path=request.path)
        return error_response('Not found', 'NOT_FOUND', 404)

    @app.errorhandler(413)
    def payload_too_large(error):
        return error_response('File too large', 'FILE_TOO_LARGE', 413)

    @app.errorhandler(500)
    def internal_error(error):
        logger.error("Internal server error", error=str(error))
        return error_response('Internal server error', 'UNKNOWN', 500)

    @app.route('/health')
    def health_check():
        """Liveness probe; 503 when the database cannot be reached"""
        from sqlalchemy import text
        from sqlalchemy.exc import SQLAlchemyError
        try:
            db.session.execute(text('SELECT 1'))
            database = 'connected'
        except SQLAlchemyError as e:
            logger.error("Health check database error", error=str(e))
            database = 'error'
        status = 'healthy' if database == 'connected' else 'degraded'
        payload = {'status': status, 'service': 'seido-import', 'database': database}
        return jsonify(payload), 200 if status == 'healthy' else 503

    from routes.import_routes import import_bp
    app.register_blueprint(import_bp, url_prefix='/api/import')

    # Register CLI commands
    from scripts import commands
    commands.init_app(app)

    return app


def _build_registry(app):
    """Register repositories and services; nothing is built before first use"""
    from services.service_registry import create_registry
    registry = create_registry()
    config = app.config

    registry.register_singleton('db_session', lambda: db.session)

    # Repositories share the scoped session proxy
    registry.register_factory('company_repository', _create_company_repository, dependencies=['db_session'])
    registry.register_factory('contact_repository', _create_contact_repository, dependencies=['db_session'])
    registry.register_factory('building_repository', _create_building_repository, dependencies=['db_session'])
    registry.register_factory('lot_repository', _create_lot_repository, dependencies=['db_session'])
    registry.register_factory('contract_repository', _create_contract_repository, dependencies=['db_session'])
    registry.register_factory('import_job_repository', _create_import_job_repository, dependencies=['db_session'])
    registry.register_factory('contact_invitation_repository', _create_contact_invitation_repository,
                              dependencies=['db_session'])

    registry.register_singleton(
        'sheet_parser',
        lambda: _create_sheet_parser(config['IMPORT_MAX_FILE_SIZE'], config['IMPORT_MAX_ROWS_PER_SHEET'])
    )
    registry.register_singleton('row_validator', _create_row_validator)
    registry.register_singleton('import_template', _create_import_template_service)

    # One adapter and executor per run
    registry.register_transient(
        'persistence_adapter',
        lambda db_session, company_repository, contact_repository, building_repository,
        lot_repository, contract_repository: _create_persistence_adapter(
            db_session, company_repository, contact_repository, building_repository,
            lot_repository, contract_repository, config['IMPORT_TIMEZONE']
        ),
        dependencies=['db_session', 'company_repository', 'contact_repository', 'building_repository',
                      'lot_repository', 'contract_repository']
    )
    registry.register_transient(
        'import_service',
        _create_import_service,
        dependencies=['persistence_adapter', 'import_job_repository']
    )

    registry.register_singleton(
        'contact_invitation',
        lambda contact_invitation_repository, contact_repository: _create_contact_invitation_service(
            contact_invitation_repository, contact_repository, config['INVITATION_EXPIRY_DAYS']
        ),
        dependencies=['contact_invitation_repository', 'contact_repository']
    )

    registry.register_transient(
        'import_wizard',
        lambda sheet_parser, row_validator, contact_invitation: _create_import_wizard(
            registry, sheet_parser, row_validator, contact_invitation,
            config['IMPORT_ERROR_MODE'], config['INVITATION_SEND_DELAY']
        ),
        dependencies=['sheet_parser', 'row_validator', 'contact_invitation']
    )

    missing = registry.validate_dependencies()
    if missing:
        raise RuntimeError(f"Service registry is incomplete: {missing}")
    logger.debug(f"Service initialization order: {registry.get_initialization_order()}")
    return registry


# Service Factory Functions
# These are only called when the service is first requested

def _create_company_repository(db_session):
    from repositories.company_repository import CompanyRepository
    return CompanyRepository(db_session)


def _create_contact_repository(db_session):
    from repositories.contact_repository import ContactRepository
    return ContactRepository(db_session)


def _create_building_repository(db_session):
    from repositories.building_repository import BuildingRepository
    return BuildingRepository(db_session)


def _create_lot_repository(db_session):
    from repositories.lot_repository import LotRepository
    return LotRepository(db_session)


def _create_contract_repository(db_session):
    from repositories.contract_repository import ContractRepository
    return ContractRepository(db_session)


def _create_import_job_repository(db_session):
    from repositories.import_job_repository import ImportJobRepository
    return ImportJobRepository(db_session)


def _create_contact_invitation_repository(db_session):
    from repositories.contact_invitation_repository import ContactInvitationRepository
    return ContactInvitationRepository(db_session)


def _create_sheet_parser(max_file_size, max_rows_per_sheet):
    from services.sheet_parser import SheetParser
    return SheetParser(max_file_size=max_file_size, max_rows_per_sheet=max_rows_per_sheet)


def _create_row_validator():
    from services.row_validator import RowValidator
    return RowValidator()


def _create_import_template_service():
    from services.import_template_service import ImportTemplateService
    return ImportTemplateService()


def _create_persistence_adapter(db_session, company_repository, contact_repository, building_repository,
                                lot_repository, contract_repository, timezone):
    from services.import_persistence import SQLAlchemyPersistenceAdapter
    from utils.datetime_utils import local_today
    return SQLAlchemyPersistenceAdapter(
        db_session,
        company_repository=company_repository,
        contact_repository=contact_repository,
        building_repository=building_repository,
        lot_repository=lot_repository,
        contract_repository=contract_repository,
        today=lambda: local_today(timezone),
    )


def _create_import_service(persistence_adapter, import_job_repository):
    from services.import_service import ImportService
    return ImportService(persistence_adapter, import_job_repository=import_job_repository)


def _create_contact_invitation_service(contact_invitation_repository, contact_repository, expiry_days):
    from services.contact_invitation_service import ContactInvitationService
    return ContactInvitationService(contact_invitation_repository, contact_repository, expiry_days=expiry_days)


def _create_import_wizard(registry, sheet_parser, row_validator, contact_invitation,
                          error_mode, invitation_delay):
    from services.import_wizard import ImportWizard
    return ImportWizard(
        import_service_factory=lambda: registry.get('import_service'),
        parser=sheet_parser,
        validator=row_validator,
        invitation_sender=lambda contact: contact_invitation.invite(contact).is_success,
        error_mode=error_mode,
        invitation_delay=invitation_delay,
    )


if __name__ == '__main__':
    app = create_app()
    app.run(debug=True)
