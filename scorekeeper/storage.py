import logging
from contextlib import contextmanager
from typing import Optional, Type, TypeVar

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from shared.errors import DomainError, NotFound, StorageFailure

logger = logging.getLogger(__name__)

T = TypeVar('T')


def configure_sqlite_locking(engine: Engine):
    """Make every SQLite transaction take the write lock up front.

    pysqlite defers BEGIN until the first write, so two transactions that
    both read before writing can interleave. Emitting ``BEGIN IMMEDIATE``
    makes SQLite behave as a single-writer arbiter; the busy timeout lets the
    losers wait instead of failing.
    """
    if engine.dialect.name != 'sqlite':
        return

    @event.listens_for(engine, 'connect')
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _begin_immediate(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')


class Storage:
    """Storage handle injected into each component.

    Wraps the Flask-SQLAlchemy session of the current application context.
    ``transaction()`` is the only place that commits.
    """

    def __init__(self, database: SQLAlchemy):
        self.db = database

    @property
    def session(self):
        return self.db.session

    def get(self, model: Type[T], ident, lock: bool = False) -> Optional[T]:
        if lock:
            return self.session.get(model, ident, with_for_update=True, populate_existing=True)
        return self.session.get(model, ident)

    def get_or_404(self, model: Type[T], ident, lock: bool = False) -> T:
        obj = self.get(model, ident, lock=lock)
        if obj is None:
            raise NotFound(f"{model.__name__} {ident} not found")
        return obj

    def add(self, obj):
        self.session.add(obj)
        return obj

    def flush(self):
        self.session.flush()

    @contextmanager
    def transaction(self):
        session = self.session
        try:
            yield session
            session.commit()
        except DomainError:
            session.rollback()
            raise
        except OperationalError as e:
            session.rollback()
            logger.error(f"Storage unavailable: {e}")
            raise StorageFailure("Storage is temporarily unavailable") from e
        except Exception:
            session.rollback()
            raise
