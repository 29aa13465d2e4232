"""
Planificateur APScheduler : désactivation périodique des QR codes de présence expirés.

Un token expiré est déjà refusé au scan ; ce job ne fait que remettre
l'état en base en cohérence (is_active = False).
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import settings
from app.database import SessionLocal

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def _sweep_expired_tokens() -> None:
    """
    Tâche planifiée : désactive les tokens expirés encore actifs.
    Import local pour éviter les imports circulaires.
    """
    from app.services.token_service import sweep_expired_tokens

    db = SessionLocal()
    try:
        count = sweep_expired_tokens(db)
        logger.debug("Balayage des QR codes : %d désactivé(s)", count)
    except Exception as exc:
        db.rollback()
        logger.error("Erreur lors du balayage des QR codes expirés : %s", exc, exc_info=True)
    finally:
        db.close()


def start_scheduler() -> None:
    """Démarre le planificateur en arrière-plan (appelé au démarrage de l'API)."""
    scheduler.add_job(
        _sweep_expired_tokens,
        trigger="interval",
        minutes=settings.TOKEN_SWEEP_INTERVAL_MINUTES,
        id="attendance_token_sweep",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        "Scheduler démarré: balayage des QR codes toutes les %d minutes.",
        settings.TOKEN_SWEEP_INTERVAL_MINUTES,
    )


def stop_scheduler() -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt de l'API)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
