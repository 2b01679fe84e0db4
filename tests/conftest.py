# tests/conftest.py
"""
Shared fixtures for the pytest test suite.
Fixtures defined here are automatically available to all tests.
"""
import pytest

from app import create_app
from extensions import db
from tests.fixtures.import_fixtures import (
    InMemoryPersistenceAdapter,
    example_parse_result,
    example_workbook,
)


@pytest.fixture(scope='module')
def app():
    """
    A Flask application for a test module, backed by in-memory SQLite and
    eager Celery tasks. Tables are created once per module.
    """
    app = create_app(config_name='testing', test_config={
        'SERVER_NAME': 'localhost.localdomain'  # Required for url_for in tests
    })

    with app.app_context():
        db.create_all()

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='module')
def client(app):
    """Test client; requests share the module's application context"""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """
    The application session, emptied after each test so tests do not see
    each other's rows.
    """
    yield db.session

    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()


@pytest.fixture
def memory_adapter():
    return InMemoryPersistenceAdapter()


@pytest.fixture
def parse_result():
    """Template example data as a ParseResult"""
    return example_parse_result()


@pytest.fixture
def workbook_bytes():
    """Template example data as xlsx bytes with localized sheet names"""
    return example_workbook()
