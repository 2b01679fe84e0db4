# celery_worker.py
from app import create_app
from celery_config import create_celery_app

# Create the Flask app instance. This is still needed to provide context for tasks when they run.
flask_app = create_app()

# Create Celery instance with shared configuration; tasks run in the app context
celery = create_celery_app(__name__, flask_app)
celery.set_default()

# Import tasks to ensure they're registered with Celery
import tasks.import_tasks  # noqa: E402,F401
