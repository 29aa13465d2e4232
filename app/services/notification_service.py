"""
Émission des événements vers le module de notification.

Fire-and-forget : appelé après le commit de l'opération métier. Un échec
d'écriture est journalisé puis annulé, il n'invalide jamais l'inscription
ou l'annulation déjà validée.
"""

import logging
import uuid
from typing import Iterable, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.class_session import ClassSession
from app.models.notification import Notification

logger = logging.getLogger(__name__)

SESSION_SCHEDULED = "session_scheduled"
SESSION_CANCELLED = "session_cancelled"
WAITLIST_PROMOTED = "waitlist_promoted"


def _session_payload(session: ClassSession, member_ids: List[uuid.UUID]) -> dict:
    return {
        "session_id": str(session.id),
        "session_name": session.name,
        "start_date": session.start_date.isoformat(),
        "start_time": session.start_time.strftime("%H:%M"),
        "member_ids": [str(m) for m in member_ids],
    }


def _dispatch(db: Session, recipients: Iterable[uuid.UUID], type_: str, title: str, message: str, data: dict) -> int:
    recipients = list(dict.fromkeys(recipients))
    try:
        for recipient_id in recipients:
            db.add(Notification(recipient_id=recipient_id, type=type_, title=title, message=message, data=data))
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Échec d'émission de la notification %s : %s", type_, exc, exc_info=True)
        return 0

    logger.info("Notification %s émise vers %d destinataire(s)", type_, len(recipients))
    return len(recipients)


def notify_session_scheduled(db: Session, session: ClassSession, member_ids: List[uuid.UUID]) -> int:
    """Séance programmée : prévient le coach et les membres déjà concernés."""
    return _dispatch(
        db,
        [session.trainer_id, *member_ids],
        SESSION_SCHEDULED,
        "Nouvelle séance programmée",
        f"La séance {session.name} est programmée le {session.start_date.strftime('%d/%m/%Y')} "
        f"à {session.start_time.strftime('%H:%M')}.",
        _session_payload(session, member_ids),
    )


def notify_session_cancelled(db: Session, session: ClassSession, member_ids: List[uuid.UUID]) -> int:
    """Séance annulée : prévient tous les membres inscrits et le coach."""
    return _dispatch(
        db,
        [session.trainer_id, *member_ids],
        SESSION_CANCELLED,
        "Séance annulée",
        f"La séance {session.name} du {session.start_date.strftime('%d/%m/%Y')} est annulée.",
        _session_payload(session, member_ids),
    )


def notify_waitlist_promoted(db: Session, session: ClassSession, member_id: uuid.UUID) -> int:
    """Membre promu depuis la liste d'attente : sa place est confirmée."""
    return _dispatch(
        db,
        [member_id],
        WAITLIST_PROMOTED,
        "Inscription confirmée",
        f"Une place s'est libérée : votre inscription à {session.name} est confirmée.",
        _session_payload(session, [member_id]),
    )
