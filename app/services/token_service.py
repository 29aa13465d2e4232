"""
Moteur des tokens de présence : QR code de séance à durée de vie courte.

Flux :
  1. Le coach (ou un administrateur) génère le QR code de sa séance ;
     un token actif encore valide est renvoyé tel quel (émission idempotente)
  2. Chaque membre inscrit scanne le QR code pour son arrivée et/ou sa sortie
  3. Le scan est enregistré, le compteur d'usage incrémenté, et le registre
     de présences du jour mis à jour, le tout en une seule transaction

Concurrence :
- Un seul token actif par séance (index unique partiel)
- usage_count n'est incrémenté que par un UPDATE conditionnel
  (usage_count < max_usage AND is_active AND expires_at > now)
- Doublon (membre, type de scan) tranché par la contrainte unique de token_scans

L'expiration est détectée au moment du scan ; le balayage périodique
(voir app.scheduler) n'est qu'un nettoyage.
"""

import base64
import io
import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import qrcode
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.database import run_atomic
from app.exceptions import (
    DuplicateScanError,
    ExpiredError,
    ForbiddenError,
    InactiveError,
    InvalidError,
    NotEnrolledError,
    NotFoundError,
    UsageExceededError,
)
from app.models.attendance_token import AttendanceToken, TokenScan
from app.models.class_session import ClassSession
from app.models.user import ROLE_ADMIN, ROLE_TRAINER
from app.schemas.attendance import AttendanceRecordResponse
from app.schemas.attendance_token import (
    ScanRequest,
    ScanResponse,
    ScanStats,
    TokenIssueRequest,
    TokenIssueResponse,
    TokenResponse,
)
from app.services import attendance_service, directory_service, enrollment_service

logger = logging.getLogger(__name__)

# Nombre de tentatives si une émission concurrente crée le token actif en premier
ISSUE_ATTEMPTS = 2


def generate_token_code() -> str:
    """Identifiant opaque du QR code : 32 octets aléatoires (CSPRNG) en hexadécimal."""
    return secrets.token_hex(32)


def generate_qr_image(code: str) -> str:
    """Génère l'image PNG du QR code encodant `code`, sous forme de data URL."""
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(code)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def issue_token(
    db: Session,
    session_id: uuid.UUID,
    data: TokenIssueRequest,
    now: Optional[datetime] = None,
) -> TokenIssueResponse:
    """
    Génère le QR code de présence d'une séance, ou renvoie le token actif existant.

    Règles métier :
    - Émetteur = coach de la séance ou administrateur (ForbiddenError sinon)
    - Séance annulée → InactiveError
    - Token actif, non expiré et sous son plafond d'usage → renvoyé inchangé (created=False)
    - Sinon l'ancien token est désactivé et un nouveau est créé
    """
    now = now or datetime.now()

    def _issue() -> Tuple[AttendanceToken, bool]:
        session = _get_session(db, session_id)
        issuer = directory_service.get_user(db, data.issuer_id)
        directory_service.require_session_staff(issuer, session)
        if not session.is_active:
            raise InactiveError("Impossible de générer un QR code pour une séance annulée.", {"session_id": str(session_id)})

        existing = db.execute(
            select(AttendanceToken)
            .where(AttendanceToken.session_id == session_id, AttendanceToken.is_active.is_(True))
            .with_for_update()
        ).scalar()

        if existing is not None:
            if existing.is_valid_for_scanning(now):
                return existing, False
            existing.is_active = False
            existing.deactivated_at = now
            db.flush()

        token = AttendanceToken(
            session_id=session_id,
            code=generate_token_code(),
            issued_by=issuer.id,
            expires_at=now + timedelta(minutes=data.ttl_minutes),
            max_usage=data.max_usage,
            usage_count=0,
            session_type=data.session_type,
            room=session.room,
            is_active=True,
        )
        db.add(token)
        db.flush()
        return token, True

    for attempt in range(1, ISSUE_ATTEMPTS + 1):
        try:
            token, created = run_atomic(db, _issue)
            break
        except IntegrityError:
            # Une émission concurrente a créé le token actif : on relit et on le renvoie
            if attempt >= ISSUE_ATTEMPTS:
                raise
            logger.warning("Émission concurrente détectée pour la séance %s, relecture", session_id)

    db.refresh(token)
    if created:
        logger.info(
            "QR code généré pour la séance %s par %s (expire à %s, %d scans max)",
            session_id, data.issuer_id, token.expires_at, token.max_usage,
        )
    else:
        logger.info("QR code actif réutilisé pour la séance %s", session_id)

    return TokenIssueResponse(
        token=_token_response(db, token),
        created=created,
        qr_code_image=generate_qr_image(token.code),
    )


def scan_token(
    db: Session,
    data: ScanRequest,
    now: Optional[datetime] = None,
) -> ScanResponse:
    """
    Enregistre le scan d'un QR code de séance par un membre.

    Validations, dans l'ordre :
    1. Code connu et actif (NotFoundError)
    2. Non expiré (ExpiredError, le token est alors désactivé)
    3. Plafond d'usage non atteint (UsageExceededError)
    4. Type de scan autorisé par le token (InvalidError)
    5. Membre connu (NotFoundError) et inscrit, liste d'attente exclue (NotEnrolledError)
    6. Pas de scan du même type déjà enregistré sur ce token (DuplicateScanError)
    """
    now = now or datetime.now()

    token = db.execute(
        select(AttendanceToken).where(AttendanceToken.code == data.code, AttendanceToken.is_active.is_(True))
    ).scalar()
    if token is None:
        raise NotFoundError("QR code invalide ou expiré.")

    if token.is_expired(now):
        _deactivate_expired(db, token.id, now)
        raise ExpiredError("Ce QR code a expiré.", {"expires_at": token.expires_at.isoformat()})

    token_id = token.id

    def _scan() -> Tuple[AttendanceToken, object]:
        token = db.get(AttendanceToken, token_id)
        _check_usage(token)
        if not token.accepts(data.scan_kind):
            raise InvalidError(
                f"Ce QR code n'accepte pas les scans de type {data.scan_kind}.",
                {"session_type": token.session_type},
            )

        directory_service.get_member(db, data.member_id)
        if not enrollment_service.is_enrolled(db, token.session_id, data.member_id):
            raise NotEnrolledError(
                "Vous n'êtes pas inscrit à cette séance.",
                {"session_id": str(token.session_id), "member_id": str(data.member_id)},
            )

        already = db.execute(
            select(TokenScan.id).where(
                TokenScan.token_id == token_id,
                TokenScan.member_id == data.member_id,
                TokenScan.scan_kind == data.scan_kind,
            )
        ).first()
        if already is not None:
            raise _duplicate(data)

        incremented = db.execute(
            update(AttendanceToken)
            .where(
                AttendanceToken.id == token_id,
                AttendanceToken.is_active.is_(True),
                AttendanceToken.expires_at > now,
                AttendanceToken.usage_count < AttendanceToken.max_usage,
            )
            .values(usage_count=AttendanceToken.usage_count + 1)
            .execution_options(synchronize_session=False)
        ).rowcount
        if incremented != 1:
            db.refresh(token)
            _check_usage(token)
            raise ExpiredError("Ce QR code a expiré.", {"expires_at": token.expires_at.isoformat()})

        location = data.location
        db.add(TokenScan(
            token_id=token_id,
            member_id=data.member_id,
            scan_kind=data.scan_kind,
            scanned_at=now,
            latitude=location.latitude if location else None,
            longitude=location.longitude if location else None,
        ))
        try:
            db.flush()
        except IntegrityError:
            raise _duplicate(data)

        session = db.get(ClassSession, token.session_id)
        record = attendance_service.record_scan(db, session, data.member_id, data.scan_kind, now, token_id)
        return token, record

    token, record = run_atomic(db, _scan)
    db.refresh(token)
    db.refresh(record)

    logger.info(
        "Scan %s du membre %s, séance %s (%d/%d usages) → %s",
        data.scan_kind, data.member_id, token.session_id, token.usage_count, token.max_usage, record.status,
    )
    return ScanResponse(
        scan_kind=data.scan_kind,
        scanned_at=now,
        usage_count=token.usage_count,
        remaining_usage=token.remaining_usage,
        attendance=AttendanceRecordResponse.model_validate(record),
        scan_stats=scan_stats(db, token.id),
    )


def deactivate_token(
    db: Session,
    token_id: uuid.UUID,
    actor_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> TokenResponse:
    """Révoque un token. Réservé à son émetteur ou à un administrateur."""
    now = now or datetime.now()
    token = db.get(AttendanceToken, token_id)
    if token is None:
        raise NotFoundError(f"Token {token_id} introuvable.", {"token_id": str(token_id)})

    actor = directory_service.get_user(db, actor_id)
    if actor.role != ROLE_ADMIN and actor.id != token.issued_by:
        raise ForbiddenError("Vous ne pouvez désactiver que vos propres QR codes.", {"token_id": str(token_id)})

    if token.is_active:
        token.is_active = False
        token.deactivated_at = now
        db.commit()
        db.refresh(token)
        logger.info("QR code %s désactivé par %s", token_id, actor_id)
    return _token_response(db, token)


def list_active_tokens(
    db: Session,
    requester_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> List[TokenResponse]:
    """Tokens actifs non expirés : tous pour un administrateur, les siens pour un coach."""
    now = now or datetime.now()
    requester = directory_service.get_user(db, requester_id)
    if not directory_service.is_staff(requester):
        raise ForbiddenError("Action réservée aux coachs et administrateurs.", {"role": requester.role})

    query = select(AttendanceToken).where(
        AttendanceToken.is_active.is_(True),
        AttendanceToken.expires_at > now,
    )
    if requester.role == ROLE_TRAINER:
        query = query.where(AttendanceToken.issued_by == requester.id)

    tokens = db.execute(query.order_by(AttendanceToken.created_at.desc())).scalars().all()
    return [_token_response(db, t) for t in tokens]


def scan_stats(db: Session, token_id: uuid.UUID) -> ScanStats:
    """Compteurs des scans d'un token : total, arrivées, sorties, membres distincts."""
    rows = db.execute(
        select(TokenScan.scan_kind, func.count(TokenScan.id))
        .where(TokenScan.token_id == token_id)
        .group_by(TokenScan.scan_kind)
    ).all()
    by_kind = {kind: count for kind, count in rows}
    unique_members = db.execute(
        select(func.count(func.distinct(TokenScan.member_id))).where(TokenScan.token_id == token_id)
    ).scalar() or 0
    return ScanStats(
        total_scans=sum(by_kind.values()),
        checkins=by_kind.get("checkin", 0),
        checkouts=by_kind.get("checkout", 0),
        unique_members=unique_members,
    )


def sweep_expired_tokens(db: Session, now: Optional[datetime] = None) -> int:
    """
    Désactive en masse les tokens expirés encore actifs.
    Nettoyage uniquement : un token expiré est déjà refusé au scan.
    Retourne le nombre de tokens désactivés.
    """
    now = now or datetime.now()
    count = db.execute(
        update(AttendanceToken)
        .where(AttendanceToken.is_active.is_(True), AttendanceToken.expires_at <= now)
        .values(is_active=False, deactivated_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount
    db.commit()
    if count:
        logger.info("%d QR code(s) expiré(s) désactivé(s)", count)
    return count


def _get_session(db: Session, session_id: uuid.UUID) -> ClassSession:
    session = db.get(ClassSession, session_id)
    if session is None:
        raise NotFoundError(f"Séance {session_id} introuvable.", {"session_id": str(session_id)})
    return session


def _token_response(db: Session, token: AttendanceToken) -> TokenResponse:
    response = TokenResponse.model_validate(token)
    response.scan_stats = scan_stats(db, token.id)
    return response


def _check_usage(token: AttendanceToken) -> None:
    if token.has_reached_max_usage():
        raise UsageExceededError(
            "Ce QR code a atteint son nombre maximal de scans.",
            {"usage_count": token.usage_count, "max_usage": token.max_usage},
        )


def _duplicate(data: ScanRequest) -> DuplicateScanError:
    action = "enregistré votre arrivée" if data.scan_kind == "checkin" else "enregistré votre sortie"
    return DuplicateScanError(
        f"Vous avez déjà {action} pour cette séance.",
        {"scan_kind": data.scan_kind, "member_id": str(data.member_id)},
    )


def _deactivate_expired(db: Session, token_id: uuid.UUID, now: datetime) -> None:
    db.execute(
        update(AttendanceToken)
        .where(AttendanceToken.id == token_id, AttendanceToken.is_active.is_(True))
        .values(is_active=False, deactivated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    logger.info("QR code %s expiré, désactivé au scan", token_id)
