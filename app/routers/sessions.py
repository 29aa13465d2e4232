"""
Router du registre des séances : programmation, inscriptions, liste d'attente
et génération du QR code de présence.
"""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.attendance_token import TokenIssueRequest, TokenIssueResponse
from app.schemas.class_session import SessionCreate, SessionResponse, SessionRoster, SessionUpdate
from app.schemas.enrollment import CancellationResult, EnrollmentRequest, EnrollmentResult
from app.services import enrollment_service, session_service, token_service

router = APIRouter(prefix="/api/v1/sessions", tags=["Séances"])


@router.post("", response_model=SessionResponse, status_code=201, summary="Programmer une séance")
def create_session(data: SessionCreate, db: Session = Depends(get_db)):
    """Programme une nouvelle séance. Réservé aux administrateurs."""
    return session_service.create_session(db, data)


@router.get("", response_model=List[SessionResponse], summary="Lister les séances")
def list_sessions(
    trainer_id: Optional[uuid.UUID] = None,
    class_type: Optional[str] = None,
    on_date: Optional[date] = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
):
    return session_service.list_sessions(db, trainer_id, class_type, on_date, include_inactive)


@router.get("/{session_id}", response_model=SessionResponse, summary="Détail d'une séance")
def get_session(session_id: uuid.UUID, db: Session = Depends(get_db)):
    return session_service.get_session(db, session_id)


@router.put("/{session_id}", response_model=SessionResponse, summary="Modifier une séance")
def update_session(session_id: uuid.UUID, data: SessionUpdate, db: Session = Depends(get_db)):
    """
    Modifie une séance. Une baisse de capacité sous le nombre d'inscrits → 409.
    Une hausse de capacité promeut la liste d'attente.
    """
    return session_service.update_session(db, session_id, data)


@router.delete("/{session_id}", response_model=SessionResponse, summary="Annuler une séance")
def cancel_session(session_id: uuid.UUID, actor_id: uuid.UUID, db: Session = Depends(get_db)):
    """Annule la séance (soft delete) et désactive son QR code. Les inscrits sont notifiés."""
    return session_service.cancel_session(db, session_id, actor_id)


@router.get("/{session_id}/roster", response_model=SessionRoster, summary="Inscrits et liste d'attente")
def get_roster(session_id: uuid.UUID, db: Session = Depends(get_db)):
    return enrollment_service.get_roster(db, session_id)


# --- Inscriptions ---

@router.post("/{session_id}/enroll", response_model=EnrollmentResult, status_code=201, summary="S'inscrire")
def enroll(session_id: uuid.UUID, data: EnrollmentRequest, db: Session = Depends(get_db)):
    """
    Inscrit un membre. Séance complète → placé en liste d'attente (status waitlisted).
    Déjà inscrit → 409, séance annulée → 410.
    """
    return enrollment_service.enroll_member(db, session_id, data.member_id)


@router.post("/{session_id}/cancel", response_model=CancellationResult, summary="Annuler son inscription")
def cancel_enrollment(session_id: uuid.UUID, data: EnrollmentRequest, db: Session = Depends(get_db)):
    """Annule l'inscription et promeut le premier membre de la liste d'attente."""
    return enrollment_service.cancel_enrollment(db, session_id, data.member_id)


# --- QR code de présence ---

@router.post(
    "/{session_id}/attendance-tokens",
    response_model=TokenIssueResponse,
    status_code=201,
    summary="Générer le QR code de présence",
)
def issue_attendance_token(
    session_id: uuid.UUID,
    data: TokenIssueRequest,
    response: Response,
    db: Session = Depends(get_db),
):
    """
    Génère le QR code de la séance (coach ou administrateur).
    Si un QR code actif est encore valide, il est renvoyé tel quel → 200.
    """
    result = token_service.issue_token(db, session_id, data)
    if not result.created:
        response.status_code = 200
    return result
