"""
Configuration partagée pour tous les tests.

- `client` : override la dépendance get_db pour éviter toute connexion réelle à PostgreSQL
  (tests des routers, services mockés)
- `db` : base SQLite en mémoire, recréée à chaque test (tests des services)
- `concurrent_write` : rejoue une écriture concurrente au milieu d'une transaction
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import datetime as dt
import uuid
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Select, create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.main import app
from app.models.class_session import ClassSession
from app.models.user import ROLE_ADMIN, ROLE_MEMBER, ROLE_TRAINER, User

# Lundi 2 mars 2026, séance de 09:00 à 10:00
SESSION_DAY = dt.date(2026, 3, 2)
SESSION_START = dt.time(9, 0)
SESSION_END = dt.time(10, 0)


@pytest.fixture
def client():
    """Client HTTP de test avec la BDD mockée."""
    mock_db = MagicMock()
    app.dependency_overrides[get_db] = lambda: mock_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    """Session SQLAlchemy sur une base SQLite en mémoire (une connexion partagée)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite ne gère pas seul BEGIN / SAVEPOINT : on lui laisse SQLAlchemy piloter la transaction
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def make_user(db):
    """Fabrique d'utilisateurs (membre par défaut)."""
    def _make(role=ROLE_MEMBER, first_name="Alex", last_name=None, is_active=True):
        user = User(
            id=uuid.uuid4(),
            email=f"{uuid.uuid4().hex[:12]}@fittrack.test",
            first_name=first_name,
            last_name=last_name or role.capitalize(),
            role=role,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def admin(make_user):
    return make_user(role=ROLE_ADMIN, first_name="Camille")


@pytest.fixture
def trainer(make_user):
    return make_user(role=ROLE_TRAINER, first_name="Jordan")


@pytest.fixture
def make_session(db, trainer):
    """Fabrique de séances : le lundi SESSION_DAY de 09:00 à 10:00, coach `trainer`."""
    def _make(capacity=2, trainer_id=None, is_active=True, **kwargs):
        session = ClassSession(
            id=uuid.uuid4(),
            name=kwargs.get("name", "HIIT du matin"),
            class_type=kwargs.get("class_type", "hiit"),
            trainer_id=trainer_id or trainer.id,
            start_time=kwargs.get("start_time", SESSION_START),
            end_time=kwargs.get("end_time", SESSION_END),
            start_date=kwargs.get("start_date", SESSION_DAY),
            end_date=kwargs.get("end_date"),
            day_of_week=kwargs.get("day_of_week"),
            room=kwargs.get("room", "Salle 1"),
            capacity=capacity,
            enrolled_count=0,
            waitlist_seq=0,
            is_active=is_active,
        )
        db.add(session)
        db.commit()
        return session
    return _make


@pytest.fixture
def concurrent_write(db, monkeypatch):
    """
    Intercale une écriture concurrente juste avant la première lecture de `table`.

    `write` est exécutée au moment où le service lit `table` pour la première fois.
    Avec `stale=True`, cette lecture renvoie « aucune ligne » : le service
    se comporte comme s'il avait lu avant l'écriture du concurrent.
    """
    def _install(table, write=None, stale=False):
        real_execute = db.execute
        state = {"fired": False}

        def _execute(statement, *args, **kwargs):
            if (
                not state["fired"]
                and isinstance(statement, Select)
                and any(f is table for f in statement.get_final_froms())
            ):
                state["fired"] = True
                if write is not None:
                    write()
                if stale:
                    empty = MagicMock()
                    empty.scalar.return_value = None
                    empty.first.return_value = None
                    return empty
            return real_execute(statement, *args, **kwargs)

        monkeypatch.setattr(db, "execute", _execute)
        return state
    return _install
