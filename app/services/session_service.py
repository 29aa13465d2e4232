"""
Service métier du registre des séances.
Gère la programmation, la lecture, la modification et l'annulation des séances.
"""

import uuid
import logging
import datetime as dt
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.database import run_atomic
from app.exceptions import InvalidError, NotFoundError
from app.models.attendance_token import AttendanceToken
from app.models.class_session import ClassSession
from app.models.user import ROLE_TRAINER
from app.schemas.class_session import SessionCreate, SessionResponse, SessionUpdate
from app.services import directory_service, enrollment_service, notification_service

logger = logging.getLogger(__name__)


def create_session(db: Session, data: SessionCreate) -> SessionResponse:
    """
    Programme une nouvelle séance (administrateur uniquement).

    Le coach référencé doit exister et avoir le rôle trainer.
    Le coach est notifié une fois la séance enregistrée.
    """
    creator = directory_service.get_user(db, data.created_by)
    directory_service.require_admin(creator)

    trainer = directory_service.get_user(db, data.trainer_id)
    if trainer.role != ROLE_TRAINER:
        raise InvalidError("L'utilisateur désigné n'est pas un coach.", {"trainer_id": str(data.trainer_id)})

    session = ClassSession(
        name=data.name,
        description=data.description,
        class_type=data.class_type,
        trainer_id=data.trainer_id,
        start_time=data.start_time,
        end_time=data.end_time,
        start_date=data.start_date,
        end_date=data.end_date,
        day_of_week=data.day_of_week,
        room=data.room,
        capacity=data.capacity,
        enrolled_count=0,
        waitlist_seq=0,
        is_active=True,
    )
    db.add(session)
    db.commit()
    db.refresh(session)

    logger.info("Séance programmée : %s (%s), capacité %d", session.name, session.id, session.capacity)
    notification_service.notify_session_scheduled(db, session, [])
    return SessionResponse.model_validate(session)


def get_session(db: Session, session_id: uuid.UUID) -> SessionResponse:
    """Retourne une séance par son ID, lève NotFoundError si elle n'existe pas."""
    session = db.get(ClassSession, session_id)
    if session is None:
        raise NotFoundError(f"Séance {session_id} introuvable.", {"session_id": str(session_id)})
    return SessionResponse.model_validate(session)


def list_sessions(
    db: Session,
    trainer_id: Optional[uuid.UUID] = None,
    class_type: Optional[str] = None,
    on_date: Optional[dt.date] = None,
    include_inactive: bool = False,
) -> List[SessionResponse]:
    """Liste les séances (actives par défaut), triées par date puis heure de début."""
    query = select(ClassSession)
    if not include_inactive:
        query = query.where(ClassSession.is_active.is_(True))
    if trainer_id is not None:
        query = query.where(ClassSession.trainer_id == trainer_id)
    if class_type is not None:
        query = query.where(ClassSession.class_type == class_type)

    sessions = db.execute(
        query.order_by(ClassSession.start_date, ClassSession.start_time)
    ).scalars().all()

    if on_date is not None:
        sessions = [s for s in sessions if s.occurs_on(on_date)]

    return [SessionResponse.model_validate(s) for s in sessions]


def update_session(db: Session, session_id: uuid.UUID, data: SessionUpdate) -> SessionResponse:
    """
    Met à jour les champs fournis d'une séance (administrateur uniquement).

    La capacité passe par le moteur d'inscription : une baisse sous le nombre
    d'inscrits est refusée, une hausse promeut la liste d'attente.
    """
    now = datetime.now()

    def _update() -> List[uuid.UUID]:
        session = db.get(ClassSession, session_id)
        if session is None:
            raise NotFoundError(f"Séance {session_id} introuvable.", {"session_id": str(session_id)})

        actor = directory_service.get_user(db, data.updated_by)
        directory_service.require_admin(actor)

        update_data = data.model_dump(exclude_unset=True, exclude={"capacity", "updated_by"})
        for field, value in update_data.items():
            setattr(session, field, value)
        if session.end_time <= session.start_time:
            raise InvalidError("L'heure de fin doit être postérieure à l'heure de début.")
        if session.end_date is not None and session.end_date < session.start_date:
            raise InvalidError(
                "La date de fin ne peut pas précéder la date de début.",
                {"start_date": session.start_date.isoformat(), "end_date": session.end_date.isoformat()},
            )
        db.flush()

        if data.capacity is None:
            return []
        return enrollment_service.apply_capacity_change(db, session_id, data.capacity, now)

    promoted = run_atomic(db, _update)
    session = db.get(ClassSession, session_id)
    db.refresh(session)

    for member_id in promoted:
        notification_service.notify_waitlist_promoted(db, session, member_id)
    if promoted:
        logger.info("Séance %s : %d membre(s) promu(s) après hausse de capacité", session_id, len(promoted))
    return SessionResponse.model_validate(session)


def cancel_session(db: Session, session_id: uuid.UUID, actor_id: uuid.UUID) -> SessionResponse:
    """
    Annule une séance (is_active = False, administrateur uniquement) et désactive son token de présence.
    Les inscriptions sont conservées ; les membres inscrits sont notifiés.
    """
    now = datetime.now()

    def _cancel() -> ClassSession:
        session = db.get(ClassSession, session_id)
        if session is None:
            raise NotFoundError(f"Séance {session_id} introuvable.", {"session_id": str(session_id)})
        directory_service.require_admin(directory_service.get_user(db, actor_id))
        session.is_active = False
        db.execute(
            update(AttendanceToken)
            .where(AttendanceToken.session_id == session_id, AttendanceToken.is_active.is_(True))
            .values(is_active=False, deactivated_at=now)
            .execution_options(synchronize_session=False)
        )
        return session

    session = run_atomic(db, _cancel)
    db.refresh(session)

    member_ids = enrollment_service.enrolled_member_ids(db, session_id)
    logger.info("Séance annulée : %s (%s), %d membre(s) inscrit(s)", session.name, session_id, len(member_ids))
    notification_service.notify_session_cancelled(db, session, member_ids)
    return SessionResponse.model_validate(session)
