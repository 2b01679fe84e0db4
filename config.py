import os
import secrets
from typing import Optional

from dotenv import load_dotenv

basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, '.env'))

ERROR_MODES = ('all_or_nothing', 'best_effort')


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid"""


def _env(key: str, default, cast=str):
    """Environment value converted with `cast`; blank or unset gives `default`"""
    value = os.environ.get(key)
    if value in (None, ''):
        return default
    try:
        return cast(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {key} must be of type {cast.__name__}, got '{value}'")


def _redis_url(default: str = '') -> str:
    """REDIS_URL, with the ssl_cert_reqs parameter Celery needs for rediss://"""
    url = os.environ.get('REDIS_URL') or default
    if url.startswith('rediss://') and 'ssl_cert_reqs' not in url:
        url += ('&' if '?' in url else '?') + 'ssl_cert_reqs=CERT_NONE'
    return url


class Config:
    """Settings shared by every environment"""
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)
    FLASK_ENV = os.environ.get('FLASK_ENV')
    LOG_LEVEL = _env('LOG_LEVEL', 'INFO')
    JSON_LOGS = _env('JSON_LOGS', 'false').lower() == 'true'
    JSON_SORT_KEYS = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'seido.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Celery reads the uppercase settings from the Flask config
    CELERY_BROKER_URL = _redis_url('redis://localhost:6379/0')
    CELERY_RESULT_BACKEND = CELERY_BROKER_URL
    CELERY_TASK_ALWAYS_EAGER = False

    # Import
    IMPORT_MAX_FILE_SIZE = _env('IMPORT_MAX_FILE_SIZE', 10 * 1024 * 1024, int)
    IMPORT_MAX_ROWS_PER_SHEET = _env('IMPORT_MAX_ROWS_PER_SHEET', 5000, int)
    IMPORT_ERROR_MODE = _env('IMPORT_ERROR_MODE', 'all_or_nothing')
    IMPORT_PREVIEW_ROWS = _env('IMPORT_PREVIEW_ROWS', 10, int)
    IMPORT_TIMEZONE = _env('IMPORT_TIMEZONE', 'Europe/Brussels')

    # Invitations
    INVITATION_EXPIRY_DAYS = _env('INVITATION_EXPIRY_DAYS', 7, int)
    INVITATION_SEND_DELAY = _env('INVITATION_SEND_DELAY', 0.5, float)

    # Werkzeug rejects anything far above the import limit; the parser reports the rest
    MAX_CONTENT_LENGTH = IMPORT_MAX_FILE_SIZE + 1024 * 1024

    @staticmethod
    def get_required_env(key: str) -> str:
        value = os.environ.get(key)
        if not value:
            raise ConfigurationError(f"Required environment variable {key} is not set")
        return value

    @classmethod
    def init_app(cls, app):
        """Check the settings that only accept a few values"""
        mode = app.config.get('IMPORT_ERROR_MODE')
        if mode not in ERROR_MODES:
            raise ConfigurationError(f"IMPORT_ERROR_MODE must be one of {', '.join(ERROR_MODES)}, got '{mode}'")
        if app.config['IMPORT_MAX_ROWS_PER_SHEET'] <= 0 or app.config['IMPORT_MAX_FILE_SIZE'] <= 0:
            raise ConfigurationError("Import limits must be positive")


class DevelopmentConfig(Config):
    DEBUG = True
    TESTING = False
    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or Config.SQLALCHEMY_DATABASE_URI


class TestingConfig(Config):
    TESTING = True
    DEBUG = True
    LOG_LEVEL = 'WARNING'
    JSON_LOGS = False

    # Flask-SQLAlchemy keeps a single connection for in-memory SQLite
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    # Tasks run in-process, no broker needed
    CELERY_BROKER_URL = 'memory://'
    CELERY_RESULT_BACKEND = 'cache+memory://'
    CELERY_TASK_ALWAYS_EAGER = True

    IMPORT_ERROR_MODE = 'all_or_nothing'
    INVITATION_SEND_DELAY = 0.0


class ProductionConfig(Config):
    DEBUG = False
    TESTING = False
    JSON_LOGS = True

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', '')
    CELERY_BROKER_URL = _redis_url()
    CELERY_RESULT_BACKEND = CELERY_BROKER_URL

    @classmethod
    def init_app(cls, app):
        if not app.config.get('SQLALCHEMY_DATABASE_URI'):
            app.config['SQLALCHEMY_DATABASE_URI'] = cls.get_required_env('DATABASE_URL')
        super().init_app(app)


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name: Optional[str] = None) -> type:
    """Configuration class for `config_name`, falling back to FLASK_ENV then development"""
    return config.get(config_name or os.environ.get('FLASK_ENV', 'development'), DevelopmentConfig)
