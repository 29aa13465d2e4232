"""
Schémas Pydantic pour le registre de présences (marquage manuel, consultation, statistiques).
"""

import uuid
import datetime as dt
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator, model_validator

from app.models.attendance import ATTENDANCE_STATUSES

MAX_NOTES_LENGTH = 500


class ManualAttendanceRequest(BaseModel):
    """Marquage manuel d'une présence par un coach ou un administrateur."""
    session_id: uuid.UUID
    member_id: uuid.UUID
    status: str
    marked_by: uuid.UUID
    date: Optional[dt.date] = None            # Par défaut : aujourd'hui
    check_in_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None
    notes: Optional[str] = None

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        if v not in ATTENDANCE_STATUSES:
            raise ValueError(f"Statut invalide. Valeurs acceptées : {set(ATTENDANCE_STATUSES)}")
        return v

    @field_validator("notes")
    @classmethod
    def notes_length(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and len(v) > MAX_NOTES_LENGTH:
            raise ValueError(f"Les notes ne peuvent pas dépasser {MAX_NOTES_LENGTH} caractères.")
        return v

    @model_validator(mode="after")
    def check_out_after_check_in(self) -> "ManualAttendanceRequest":
        if self.check_in_time and self.check_out_time and self.check_out_time < self.check_in_time:
            raise ValueError("L'heure de sortie ne peut pas précéder l'heure d'arrivée.")
        return self


class AttendanceRecordResponse(BaseModel):
    id: uuid.UUID
    member_id: uuid.UUID
    session_id: uuid.UUID
    attendance_date: dt.date
    scheduled_start: datetime
    scheduled_end: datetime
    check_in_time: Optional[datetime]
    check_out_time: Optional[datetime]
    status: str
    is_late: bool
    minutes_late: Optional[int]
    is_early_departure: bool
    minutes_early: Optional[int]
    duration_minutes: Optional[int]
    attendance_method: str
    manual_override: bool
    notes: Optional[str]

    model_config = {"from_attributes": True}


class AttendanceFilters(BaseModel):
    """Critères de filtrage du registre (consultation et statistiques)."""
    session_id: Optional[uuid.UUID] = None
    member_id: Optional[uuid.UUID] = None
    trainer_id: Optional[uuid.UUID] = None
    status: Optional[str] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None


class AttendancePage(BaseModel):
    items: List[AttendanceRecordResponse]
    page: int
    limit: int
    total: int
    pages: int


class AttendanceStats(BaseModel):
    total: int
    present: int
    absent: int
    late: int
    excused: int
    cancelled: int
    qr_code_scans: int
    manual_entries: int
    avg_duration_minutes: Optional[float]
    attendance_rate: float  # (présents + retards) / total × 100, 2 décimales
