"""
Router du registre des présences : scan du QR code, marquage manuel,
consultation et statistiques.
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.attendance import (
    AttendanceFilters,
    AttendancePage,
    AttendanceRecordResponse,
    AttendanceStats,
    ManualAttendanceRequest,
)
from app.schemas.attendance_token import ScanRequest, ScanResponse
from app.services import attendance_service, token_service

router = APIRouter(prefix="/api/v1/attendance", tags=["Présences"])


@router.post("/scan", response_model=ScanResponse, summary="Scanner le QR code de la séance")
def scan(data: ScanRequest, db: Session = Depends(get_db)):
    """
    Enregistre l'arrivée ou la sortie d'un membre inscrit.
    QR code inconnu → 404, expiré → 410, plafond atteint ou doublon → 409.
    """
    return token_service.scan_token(db, data)


@router.post("/manual", response_model=AttendanceRecordResponse, summary="Marquer une présence manuellement")
def mark_manually(data: ManualAttendanceRequest, db: Session = Depends(get_db)):
    """Marquage par le coach de la séance ou un administrateur. Le statut choisi prime sur les scans."""
    return attendance_service.mark_manually(db, data)


@router.get("/stats", response_model=AttendanceStats, summary="Statistiques de présence")
def get_stats(
    requester_id: uuid.UUID,
    session_id: Optional[uuid.UUID] = None,
    trainer_id: Optional[uuid.UUID] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
):
    filters = AttendanceFilters(
        session_id=session_id,
        trainer_id=trainer_id,
        start_date=start_date,
        end_date=end_date,
    )
    return attendance_service.get_stats(db, requester_id, filters)


@router.get("", response_model=AttendancePage, summary="Historique des présences")
def list_records(
    requester_id: uuid.UUID,
    session_id: Optional[uuid.UUID] = None,
    member_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """Un membre ne voit que ses présences, un coach celles de ses séances."""
    filters = AttendanceFilters(
        session_id=session_id,
        member_id=member_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
    )
    return attendance_service.list_records(db, requester_id, filters, page, limit)
