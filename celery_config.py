"""
Shared Celery configuration for both Flask app and Celery workers
"""
import logging
import os
import ssl
from urllib.parse import urlparse, parse_qs

from celery import Celery
from flask import has_app_context

logger = logging.getLogger(__name__)

SSL_OPTIONS = {
    'ssl_cert_reqs': ssl.CERT_NONE,
    'ssl_ca_certs': None,
    'ssl_certfile': None,
    'ssl_keyfile': None,
}


def add_ssl_params(url: str) -> str:
    """Append ssl_cert_reqs to rediss:// URLs that do not carry it"""
    if not url.startswith('rediss://'):
        return url
    parsed = urlparse(url)
    if 'ssl_cert_reqs' not in parse_qs(parsed.query):
        separator = '&' if parsed.query else '?'
        return url + f"{separator}ssl_cert_reqs=CERT_NONE"
    return url


def create_celery_app(app_name=__name__, flask_app=None):
    """
    Create a Celery app with proper SSL Redis configuration.

    When a Flask app is given, broker settings and eager mode come from its
    config and every task runs inside its application context.
    """
    flask_config = flask_app.config if flask_app is not None else {}
    broker_url = (flask_config.get('CELERY_BROKER_URL') or os.environ.get('CELERY_BROKER_URL')
                  or os.environ.get('REDIS_URL') or 'redis://localhost:6379/0')
    result_backend_url = (flask_config.get('CELERY_RESULT_BACKEND')
                          or os.environ.get('CELERY_RESULT_BACKEND') or broker_url)

    broker_uses_ssl = broker_url.startswith('rediss://')
    backend_uses_ssl = result_backend_url.startswith('rediss://')

    if broker_uses_ssl or backend_uses_ssl:
        celery = Celery(
            app_name,
            broker=add_ssl_params(broker_url),
            backend=add_ssl_params(result_backend_url),
            broker_use_ssl=SSL_OPTIONS if broker_uses_ssl else None,
            redis_backend_use_ssl=SSL_OPTIONS if backend_uses_ssl else None,
            broker_connection_retry_on_startup=True,
            broker_connection_retry=True,
            broker_connection_max_retries=3,
            broker_transport_options={
                'socket_connect_timeout': 30,
                'socket_timeout': 30,
            }
        )
    else:
        celery = Celery(app_name, broker=broker_url, backend=result_backend_url)

    always_eager = bool(flask_config.get('CELERY_TASK_ALWAYS_EAGER', False))
    celery.conf.update(
        task_always_eager=always_eager,
        task_store_eager_result=always_eager,
        task_track_started=True,
        task_serializer='json',
        result_serializer='json',
        accept_content=['json'],
        result_expires=24 * 3600,
        timezone='UTC',
    )

    if flask_app is not None:
        bind_flask_context(celery, flask_app)

    logger.info(f"Celery configured (broker ssl={broker_uses_ssl}, backend ssl={backend_uses_ssl}, "
                f"eager={always_eager})")
    return celery


def bind_flask_context(celery, flask_app) -> None:
    """Set the Task base class so tasks run within the Flask app context"""

    class ContextTask(celery.Task):
        def __call__(self, *args, **kwargs):
            # Eager tasks called from a request reuse its context and session
            if has_app_context():
                return self.run(*args, **kwargs)
            with flask_app.app_context():
                return self.run(*args, **kwargs)

    celery.Task = ContextTask
