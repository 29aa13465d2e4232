"""
Registre de présences : un enregistrement par (membre, séance, jour).

Machine à états du statut : absent (initial) → present | late par l'arrivée
automatique (scan), ou n'importe quel statut par marquage manuel.

Règles de priorité :
- Un enregistrement excused / cancelled n'est jamais modifié par un scan
- Un statut fixé manuellement (manual_override) n'est jamais recalculé
  automatiquement ; seul un nouveau marquage manuel « absent » le rouvre
- L'arrivée la plus tôt de la journée fait foi ; la sortie suit la règle du dernier écrivain

Les champs dérivés (retard, départ anticipé) sont recalculés à chaque
écriture à partir des horaires prévus et réels.
"""

import logging
import math
import uuid
import datetime as dt
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.database import run_atomic
from app.exceptions import ForbiddenError, NotEnrolledError, NotFoundError
from app.models.attendance import (
    METHOD_MANUAL,
    METHOD_QR_CODE,
    STATUS_ABSENT,
    STATUS_CANCELLED,
    STATUS_EXCUSED,
    STATUS_LATE,
    STATUS_PRESENT,
    AttendanceRecord,
)
from app.models.attendance_token import SCAN_CHECKIN
from app.models.class_session import ClassSession
from app.models.user import ROLE_ADMIN, ROLE_MEMBER, ROLE_TRAINER, User
from app.schemas.attendance import (
    AttendanceFilters,
    AttendancePage,
    AttendanceRecordResponse,
    AttendanceStats,
    ManualAttendanceRequest,
)
from app.services import directory_service, enrollment_service

logger = logging.getLogger(__name__)

# Statuts qu'un scan ne peut pas écraser
LOCKED_STATUSES = (STATUS_EXCUSED, STATUS_CANCELLED)


# ----------------------------------------------------------------
# Dérivation (fonctions pures)
# ----------------------------------------------------------------

def scheduled_window(session: ClassSession, day: dt.date) -> Tuple[datetime, datetime]:
    """Horaires prévus de la séance pour une date donnée."""
    return datetime.combine(day, session.start_time), datetime.combine(day, session.end_time)


def _minutes(delta: dt.timedelta) -> int:
    return round(delta.total_seconds() / 60)


def derive_fields(record: AttendanceRecord) -> None:
    """Recalcule retard et départ anticipé à partir des horaires. Ne touche pas au statut."""
    if record.check_in_time is not None and record.check_in_time > record.scheduled_start:
        record.is_late = True
        record.minutes_late = _minutes(record.check_in_time - record.scheduled_start)
    else:
        record.is_late = False
        record.minutes_late = None

    if record.check_out_time is not None and record.check_out_time < record.scheduled_end:
        record.is_early_departure = True
        record.minutes_early = _minutes(record.scheduled_end - record.check_out_time)
    else:
        record.is_early_departure = False
        record.minutes_early = None


def apply_check_in(record: AttendanceRecord, at: datetime) -> None:
    """
    Enregistre une arrivée et recalcule le statut automatique (present | late).

    Plusieurs arrivées le même jour (nouveau QR code) : la plus tôt fait foi.
    """
    if record.check_in_time is None or at < record.check_in_time:
        record.check_in_time = at
    derive_fields(record)
    if record.manual_override or record.status in LOCKED_STATUSES:
        return
    record.status = STATUS_LATE if record.is_late else STATUS_PRESENT


def apply_check_out(record: AttendanceRecord, at: datetime) -> None:
    """Enregistre une sortie. Le statut n'est jamais modifié par une sortie."""
    record.check_out_time = at
    derive_fields(record)


# ----------------------------------------------------------------
# Écritures
# ----------------------------------------------------------------

def record_scan(
    db: Session,
    session: ClassSession,
    member_id: uuid.UUID,
    scan_kind: str,
    at: datetime,
    token_id: Optional[uuid.UUID] = None,
) -> AttendanceRecord:
    """
    Met à jour (ou crée) l'enregistrement du jour suite à un scan de QR code.
    À appeler dans la transaction du scan : aucun commit ici.
    """
    record = _get_or_create_record(db, session, member_id, at.date(), METHOD_QR_CODE, marked_by=member_id)
    record.token_id = token_id
    if scan_kind == SCAN_CHECKIN:
        apply_check_in(record, at)
    else:
        apply_check_out(record, at)
    record.last_modified_by = member_id
    return record


def mark_manually(
    db: Session,
    data: ManualAttendanceRequest,
    now: Optional[datetime] = None,
) -> AttendanceRecordResponse:
    """
    Marquage manuel d'une présence par le coach de la séance ou un administrateur.

    Le statut fourni s'impose (manual_override) : un scan ultérieur ne le
    recalculera pas. Marquer « absent » rouvre l'enregistrement au calcul automatique.

    Lève NotFoundError (séance, membre ou auteur inconnu), ForbiddenError
    (auteur non autorisé) ou NotEnrolledError (membre non inscrit).
    """
    now = now or datetime.now()
    day = data.date or now.date()

    def _mark() -> AttendanceRecord:
        session = _get_session(db, data.session_id)
        actor = directory_service.get_user(db, data.marked_by)
        directory_service.require_session_staff(actor, session)
        directory_service.get_member(db, data.member_id)
        if not enrollment_service.is_enrolled(db, data.session_id, data.member_id):
            raise NotEnrolledError(
                "Ce membre n'est pas inscrit à cette séance.",
                {"session_id": str(data.session_id), "member_id": str(data.member_id)},
            )

        record = _get_or_create_record(db, session, data.member_id, day, METHOD_MANUAL, marked_by=actor.id)
        if data.check_in_time is not None:
            record.check_in_time = data.check_in_time
        elif data.status == STATUS_PRESENT and record.check_in_time is None and day == now.date():
            # Présent sans heure d'arrivée : arrivée enregistrée à l'heure du marquage
            record.check_in_time = now
        if data.check_out_time is not None:
            record.check_out_time = data.check_out_time
        derive_fields(record)

        record.status = data.status
        record.manual_override = data.status != STATUS_ABSENT
        record.attendance_method = METHOD_MANUAL
        record.last_modified_by = actor.id
        if data.notes is not None:
            record.notes = data.notes
        return record

    record = run_atomic(db, _mark)
    db.refresh(record)

    logger.info(
        "Présence manuelle : membre %s, séance %s, %s → %s (par %s)",
        data.member_id, data.session_id, day, record.status, data.marked_by,
    )
    return AttendanceRecordResponse.model_validate(record)


# ----------------------------------------------------------------
# Lectures
# ----------------------------------------------------------------

def list_records(
    db: Session,
    requester_id: uuid.UUID,
    filters: AttendanceFilters,
    page: int = 1,
    limit: int = 20,
) -> AttendancePage:
    """
    Consultation paginée du registre, limitée selon le rôle :
    un membre ne voit que ses présences, un coach celles de ses séances.
    """
    requester = directory_service.get_user(db, requester_id)
    conditions = _scope_conditions(requester, filters, allow_member=True)

    total = db.execute(
        select(func.count()).select_from(AttendanceRecord).where(*conditions)
    ).scalar() or 0

    records = db.execute(
        select(AttendanceRecord)
        .where(*conditions)
        .order_by(AttendanceRecord.attendance_date.desc(), AttendanceRecord.check_in_time.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()

    return AttendancePage(
        items=[AttendanceRecordResponse.model_validate(r) for r in records],
        page=page,
        limit=limit,
        total=total,
        pages=math.ceil(total / limit) if total else 0,
    )


def get_stats(db: Session, requester_id: uuid.UUID, filters: AttendanceFilters) -> AttendanceStats:
    """
    Statistiques agrégées du registre (coachs et administrateurs).

    Taux de présence = (présents + retards) / total × 100, arrondi à 2 décimales.
    """
    requester = directory_service.get_user(db, requester_id)
    conditions = _scope_conditions(requester, filters, allow_member=False)

    by_status = dict(db.execute(
        select(AttendanceRecord.status, func.count())
        .where(*conditions)
        .group_by(AttendanceRecord.status)
    ).all())
    by_method = dict(db.execute(
        select(AttendanceRecord.attendance_method, func.count())
        .where(*conditions)
        .group_by(AttendanceRecord.attendance_method)
    ).all())
    timings = db.execute(
        select(AttendanceRecord.check_in_time, AttendanceRecord.check_out_time)
        .where(
            *conditions,
            AttendanceRecord.check_in_time.is_not(None),
            AttendanceRecord.check_out_time.is_not(None),
        )
    ).all()

    total = sum(by_status.values())
    present = by_status.get(STATUS_PRESENT, 0)
    late = by_status.get(STATUS_LATE, 0)
    durations = [(out - in_).total_seconds() / 60 for in_, out in timings]

    return AttendanceStats(
        total=total,
        present=present,
        absent=by_status.get(STATUS_ABSENT, 0),
        late=late,
        excused=by_status.get(STATUS_EXCUSED, 0),
        cancelled=by_status.get(STATUS_CANCELLED, 0),
        qr_code_scans=by_method.get(METHOD_QR_CODE, 0),
        manual_entries=by_method.get(METHOD_MANUAL, 0),
        avg_duration_minutes=round(sum(durations) / len(durations), 2) if durations else None,
        attendance_rate=round((present + late) / total * 100, 2) if total else 0.0,
    )


def _scope_conditions(requester: User, filters: AttendanceFilters, allow_member: bool) -> list:
    conditions = []
    if requester.role == ROLE_MEMBER:
        if not allow_member:
            raise ForbiddenError("Statistiques réservées aux coachs et administrateurs.", {"role": requester.role})
        conditions.append(AttendanceRecord.member_id == requester.id)
    elif requester.role == ROLE_TRAINER:
        conditions.append(AttendanceRecord.trainer_id == requester.id)
        if filters.member_id is not None:
            conditions.append(AttendanceRecord.member_id == filters.member_id)
    elif requester.role == ROLE_ADMIN:
        if filters.member_id is not None:
            conditions.append(AttendanceRecord.member_id == filters.member_id)
        if filters.trainer_id is not None:
            conditions.append(AttendanceRecord.trainer_id == filters.trainer_id)

    if filters.session_id is not None:
        conditions.append(AttendanceRecord.session_id == filters.session_id)
    if filters.status is not None:
        conditions.append(AttendanceRecord.status == filters.status)
    if filters.start_date is not None:
        conditions.append(AttendanceRecord.attendance_date >= filters.start_date)
    if filters.end_date is not None:
        conditions.append(AttendanceRecord.attendance_date <= filters.end_date)
    return conditions


def _get_session(db: Session, session_id: uuid.UUID) -> ClassSession:
    session = db.get(ClassSession, session_id)
    if session is None:
        raise NotFoundError(f"Séance {session_id} introuvable.", {"session_id": str(session_id)})
    return session


def _locked_record(db: Session, member_id: uuid.UUID, session_id: uuid.UUID, day: dt.date) -> Optional[AttendanceRecord]:
    """Lit l'enregistrement du jour en le verrouillant (SELECT … FOR UPDATE) jusqu'au commit."""
    return db.execute(
        select(AttendanceRecord)
        .where(
            AttendanceRecord.member_id == member_id,
            AttendanceRecord.session_id == session_id,
            AttendanceRecord.attendance_date == day,
        )
        .with_for_update()
    ).scalar()


def _get_or_create_record(
    db: Session,
    session: ClassSession,
    member_id: uuid.UUID,
    day: dt.date,
    method: str,
    marked_by: Optional[uuid.UUID] = None,
) -> AttendanceRecord:
    """
    Retourne l'enregistrement (membre, séance, jour), créé à l'état absent si besoin.

    La création passe par un SAVEPOINT : si une requête concurrente a inséré
    la même clé entre-temps, on relit la ligne gagnante au lieu d'échouer.
    """
    record = _locked_record(db, member_id, session.id, day)
    if record is not None:
        return record

    scheduled_start, scheduled_end = scheduled_window(session, day)
    record = AttendanceRecord(
        member_id=member_id,
        session_id=session.id,
        trainer_id=session.trainer_id,
        attendance_date=day,
        scheduled_start=scheduled_start,
        scheduled_end=scheduled_end,
        status=STATUS_ABSENT,
        is_late=False,
        is_early_departure=False,
        attendance_method=method,
        manual_override=False,
        marked_by=marked_by,
    )
    try:
        with db.begin_nested():
            db.add(record)
    except IntegrityError:
        logger.debug("Enregistrement créé en parallèle, relecture : membre %s, séance %s, %s", member_id, session.id, day)
        record = _locked_record(db, member_id, session.id, day)
    return record
