# extensions.py

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import event

# Single source of truth for the db object; bound to an app in create_app()
db = SQLAlchemy()
migrate = Migrate()


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


def enable_sqlite_savepoints(engine):
    """
    Let SQLAlchemy own BEGIN on pysqlite connections.

    The import runs each row inside a SAVEPOINT; pysqlite's implicit
    transaction handling otherwise breaks nested transactions. Natural key
    lookups compare lower(name), so the ASCII-only built-in is replaced
    for names such as "Résidence LÉOPOLD".
    """
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        dbapi_connection.create_function("lower", 1, _unicode_lower, deterministic=True)
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")
