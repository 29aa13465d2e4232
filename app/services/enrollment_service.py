"""
Moteur d'inscription et de liste d'attente.

Invariant : enrolled_count <= capacity à tout instant observable, même
avec des requêtes concurrentes sur la même séance.

Stratégie : toute modification de enrolled_count passe par un UPDATE
conditionnel (compare-and-increment exécuté par la BDD). La ligne de la
séance est verrouillée par l'UPDATE jusqu'au commit ; deux inscriptions
concurrentes à la dernière place ne peuvent donc pas réussir toutes les deux.
Les transitions de statut d'une inscription sont elles aussi conditionnelles
(WHERE status = <ancien statut>), ce qui évite les doubles annulations ou
doubles promotions.

La promotion depuis la liste d'attente est synchrone : elle a lieu dans la
même transaction que l'annulation.
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.database import run_atomic
from app.exceptions import (
    AlreadyEnrolledError,
    CapacityConflictError,
    InactiveError,
    NotEnrolledError,
    NotFoundError,
)
from app.models.class_session import ClassSession
from app.models.enrollment import CANCELLED, ENROLLED, WAITLISTED, Enrollment
from app.models.user import User
from app.schemas.class_session import RosterEntry, SessionRoster
from app.schemas.enrollment import CancellationResult, EnrollmentResult
from app.services import directory_service, notification_service

logger = logging.getLogger(__name__)

# Nombre de candidats lus à chaque tentative de promotion
PROMOTION_BATCH = 5


def enroll_member(
    db: Session,
    session_id: uuid.UUID,
    member_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> EnrollmentResult:
    """
    Inscrit un membre à une séance, ou l'ajoute en liste d'attente si elle est complète.

    Validations :
    1. La séance existe (NotFoundError) et est active (InactiveError)
    2. Le membre existe (NotFoundError)
    3. Aucune inscription non annulée pour ce couple (AlreadyEnrolledError)

    Une réinscription après annulation est une nouvelle demande : le membre
    repart en fin de liste d'attente si la séance est complète.
    """
    now = now or datetime.now()

    def _enroll() -> Enrollment:
        session = _get_session(db, session_id)
        directory_service.get_member(db, member_id)
        if not session.is_active:
            raise InactiveError("Cette séance n'est plus ouverte aux inscriptions.", {"session_id": str(session_id)})

        if _active_entry(db, session_id, member_id) is not None:
            raise AlreadyEnrolledError(
                "Ce membre est déjà inscrit ou en liste d'attente pour cette séance.",
                {"session_id": str(session_id), "member_id": str(member_id)},
            )

        if _reserve_seat(db, session_id):
            entry = Enrollment(session_id=session_id, member_id=member_id, status=ENROLLED, enrolled_at=now)
        else:
            entry = Enrollment(
                session_id=session_id,
                member_id=member_id,
                status=WAITLISTED,
                waitlist_position=_next_waitlist_position(db, session_id),
            )
        db.add(entry)

        # L'index unique partiel tranche entre deux demandes simultanées du même membre
        try:
            db.flush()
        except IntegrityError:
            raise AlreadyEnrolledError(
                "Ce membre est déjà inscrit ou en liste d'attente pour cette séance.",
                {"session_id": str(session_id), "member_id": str(member_id)},
            )
        return entry

    entry = run_atomic(db, _enroll)
    session = db.get(ClassSession, session_id)

    position = None
    if entry.status == WAITLISTED:
        position = _waitlist_rank(db, session_id, entry.waitlist_position)
        logger.info(
            "Membre %s en liste d'attente (position %d), séance %s complète (%d/%d)",
            member_id, position, session_id, session.enrolled_count, session.capacity,
        )
    else:
        logger.info(
            "Membre %s inscrit à la séance %s (%d/%d)",
            member_id, session_id, session.enrolled_count, session.capacity,
        )

    return EnrollmentResult(
        session_id=session_id,
        member_id=member_id,
        status=entry.status,
        position=position,
        enrolled_count=session.enrolled_count,
        capacity=session.capacity,
    )


def cancel_enrollment(
    db: Session,
    session_id: uuid.UUID,
    member_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> CancellationResult:
    """
    Annule l'inscription (ou la place en liste d'attente) d'un membre.

    - Inscription annulée → une place est libérée puis immédiatement attribuée
      au premier membre de la liste d'attente (plus petite position), s'il y en a un
    - Place en liste d'attente annulée → simple passage à CANCELLED ; les autres
      positions gardent leur ordre (les trous sont autorisés)

    Lève NotEnrolledError si le membre n'a aucune inscription active.
    """
    now = now or datetime.now()

    def _cancel() -> Tuple[str, Optional[uuid.UUID]]:
        _get_session(db, session_id)
        entry = _active_entry(db, session_id, member_id)
        if entry is None:
            raise NotEnrolledError(
                "Ce membre n'est pas inscrit à cette séance.",
                {"session_id": str(session_id), "member_id": str(member_id)},
            )

        previous_status = entry.status
        cancelled = db.execute(
            update(Enrollment)
            .where(Enrollment.id == entry.id, Enrollment.status == previous_status)
            .values(status=CANCELLED, cancelled_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        if cancelled != 1:
            # Annulation concurrente déjà passée
            raise NotEnrolledError(
                "Ce membre n'est pas inscrit à cette séance.",
                {"session_id": str(session_id), "member_id": str(member_id)},
            )

        promoted_id = None
        if previous_status == ENROLLED:
            _release_seat(db, session_id)
            promoted_id = _promote_next(db, session_id, now)
        return previous_status, promoted_id

    previous_status, promoted_id = run_atomic(db, _cancel)
    session = db.get(ClassSession, session_id)

    logger.info(
        "Annulation membre %s (%s), séance %s : %d/%d inscrits%s",
        member_id, previous_status, session_id, session.enrolled_count, session.capacity,
        f", promotion de {promoted_id}" if promoted_id else "",
    )
    if promoted_id is not None:
        notification_service.notify_waitlist_promoted(db, session, promoted_id)

    return CancellationResult(
        session_id=session_id,
        member_id=member_id,
        previous_status=previous_status,
        new_enrolled_count=session.enrolled_count,
        promoted_member_id=promoted_id,
    )


def is_enrolled(db: Session, session_id: uuid.UUID, member_id: uuid.UUID) -> bool:
    """True si le membre a une inscription confirmée (la liste d'attente ne compte pas)."""
    return db.execute(
        select(Enrollment.id).where(
            Enrollment.session_id == session_id,
            Enrollment.member_id == member_id,
            Enrollment.status == ENROLLED,
        )
    ).first() is not None


def enrolled_member_ids(db: Session, session_id: uuid.UUID) -> List[uuid.UUID]:
    """Identifiants des membres inscrits (hors liste d'attente)."""
    return list(db.execute(
        select(Enrollment.member_id)
        .where(Enrollment.session_id == session_id, Enrollment.status == ENROLLED)
        .order_by(Enrollment.enrolled_at)
    ).scalars().all())


def apply_capacity_change(
    db: Session,
    session_id: uuid.UUID,
    capacity: int,
    now: Optional[datetime] = None,
) -> List[uuid.UUID]:
    """
    Modifie la capacité d'une séance dans la transaction en cours (sans commit).

    Une capacité inférieure au nombre d'inscrits est refusée (CapacityConflictError).
    Une hausse de capacité promeut la liste d'attente jusqu'à remplir les places.
    Retourne les membres promus.
    """
    now = now or datetime.now()
    updated = db.execute(
        update(ClassSession)
        .where(ClassSession.id == session_id, ClassSession.enrolled_count <= capacity)
        .values(capacity=capacity)
        .execution_options(synchronize_session=False)
    ).rowcount
    if updated != 1:
        enrolled_count = db.execute(
            select(ClassSession.enrolled_count).where(ClassSession.id == session_id)
        ).scalar()
        raise CapacityConflictError(
            "La capacité ne peut pas être inférieure au nombre de membres inscrits.",
            {"capacity": capacity, "enrolled_count": enrolled_count},
        )

    promoted = []
    while True:
        member_id = _promote_next(db, session_id, now)
        if member_id is None:
            break
        promoted.append(member_id)
    return promoted


def get_roster(db: Session, session_id: uuid.UUID) -> SessionRoster:
    """Feuille de séance : inscrits puis liste d'attente dans l'ordre d'arrivée."""
    session = _get_session(db, session_id)
    rows = db.execute(
        select(Enrollment, User)
        .join(User, User.id == Enrollment.member_id)
        .where(Enrollment.session_id == session_id, Enrollment.status != CANCELLED)
        .order_by(Enrollment.waitlist_position.nulls_first(), Enrollment.enrolled_at, User.last_name)
    ).all()

    enrolled, waitlist = [], []
    for entry, user in rows:
        item = RosterEntry(
            member_id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            status=entry.status,
            enrolled_at=entry.enrolled_at,
        )
        if entry.status == WAITLISTED:
            item.waitlist_position = len(waitlist) + 1
            waitlist.append(item)
        else:
            enrolled.append(item)

    return SessionRoster(
        session_id=session.id,
        capacity=session.capacity,
        enrolled_count=session.enrolled_count,
        enrolled=enrolled,
        waitlist=waitlist,
    )


def _get_session(db: Session, session_id: uuid.UUID) -> ClassSession:
    session = db.get(ClassSession, session_id)
    if session is None:
        raise NotFoundError(f"Séance {session_id} introuvable.", {"session_id": str(session_id)})
    return session


def _active_entry(db: Session, session_id: uuid.UUID, member_id: uuid.UUID) -> Optional[Enrollment]:
    return db.execute(
        select(Enrollment).where(
            Enrollment.session_id == session_id,
            Enrollment.member_id == member_id,
            Enrollment.status != CANCELLED,
        )
    ).scalar()


def _reserve_seat(db: Session, session_id: uuid.UUID) -> bool:
    """Compare-and-increment : prend une place seulement s'il en reste une."""
    result = db.execute(
        update(ClassSession)
        .where(
            ClassSession.id == session_id,
            ClassSession.is_active.is_(True),
            ClassSession.enrolled_count < ClassSession.capacity,
        )
        .values(enrolled_count=ClassSession.enrolled_count + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _release_seat(db: Session, session_id: uuid.UUID) -> None:
    db.execute(
        update(ClassSession)
        .where(ClassSession.id == session_id, ClassSession.enrolled_count > 0)
        .values(enrolled_count=ClassSession.enrolled_count - 1)
        .execution_options(synchronize_session=False)
    )


def _next_waitlist_position(db: Session, session_id: uuid.UUID) -> int:
    """Attribue la position suivante (compteur de la séance, strictement croissant)."""
    db.execute(
        update(ClassSession)
        .where(ClassSession.id == session_id)
        .values(waitlist_seq=ClassSession.waitlist_seq + 1)
        .execution_options(synchronize_session=False)
    )
    return db.execute(
        select(ClassSession.waitlist_seq).where(ClassSession.id == session_id)
    ).scalar_one()


def _promote_next(db: Session, session_id: uuid.UUID, now: datetime) -> Optional[uuid.UUID]:
    """
    Promeut le premier membre de la liste d'attente si une place est disponible.
    La place est réservée d'abord ; elle est rendue si aucun candidat n'a pu être promu.
    """
    if not _reserve_seat(db, session_id):
        return None

    candidates = db.execute(
        select(Enrollment.id, Enrollment.member_id)
        .where(Enrollment.session_id == session_id, Enrollment.status == WAITLISTED)
        .order_by(Enrollment.waitlist_position)
        .limit(PROMOTION_BATCH)
    ).all()

    for entry_id, member_id in candidates:
        promoted = db.execute(
            update(Enrollment)
            .where(Enrollment.id == entry_id, Enrollment.status == WAITLISTED)
            .values(status=ENROLLED, enrolled_at=now, promoted_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        if promoted == 1:
            return member_id

    _release_seat(db, session_id)
    return None


def _waitlist_rank(db: Session, session_id: uuid.UUID, position: int) -> int:
    """Rang courant (1 = prochain promu) d'une position de liste d'attente."""
    return db.execute(
        select(func.count())
        .select_from(Enrollment)
        .where(
            Enrollment.session_id == session_id,
            Enrollment.status == WAITLISTED,
            Enrollment.waitlist_position <= position,
        )
    ).scalar() or 0
