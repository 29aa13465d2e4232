"""
Configuration de la connexion à la base de données PostgreSQL.
Utilise SQLAlchemy avec un moteur synchrone (un thread par requête FastAPI).
"""

import logging
from typing import Callable, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLite (dev/tests) : la connexion est partagée entre les threads du serveur
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dépendance FastAPI: fournit une session BDD et la ferme après usage."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def run_atomic(db: Session, operation: Callable[[], T], attempts: int = 0) -> T:
    """
    Exécute `operation` puis commit, le tout en une seule transaction.

    - Erreur métier ou inattendue → rollback complet puis propagation (aucune écriture partielle)
    - OperationalError (deadlock, échec de sérialisation, verrou expiré) → rollback et
      nouvelle tentative, au maximum `attempts` fois (DB_RETRY_ATTEMPTS par défaut)

    Les rejets métier ne sont jamais rejoués.
    """
    attempts = attempts or settings.DB_RETRY_ATTEMPTS
    for attempt in range(1, attempts + 1):
        try:
            result = operation()
            db.commit()
            return result
        except OperationalError as exc:
            db.rollback()
            if attempt >= attempts:
                raise
            logger.warning(
                "Contention BDD (tentative %d/%d), nouvel essai : %s",
                attempt, attempts, exc.orig,
            )
        except Exception:
            db.rollback()
            raise
    raise RuntimeError("run_atomic : aucune tentative exécutée.")
