"""
Modèle SQLAlchemy du registre de présences : un enregistrement par (membre, séance, jour).

Les champs dérivés (retard, départ anticipé) ne sont écrits que par
attendance_service, à partir des horaires prévus et des horaires réels.
"""

import uuid
from typing import Optional
from sqlalchemy import (
    Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid, func,
)

from app.database import Base

STATUS_ABSENT = "absent"
STATUS_PRESENT = "present"
STATUS_LATE = "late"
STATUS_EXCUSED = "excused"
STATUS_CANCELLED = "cancelled"

ATTENDANCE_STATUSES = (STATUS_ABSENT, STATUS_PRESENT, STATUS_LATE, STATUS_EXCUSED, STATUS_CANCELLED)

METHOD_QR_CODE = "qr_code"
METHOD_MANUAL = "manual"


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("member_id", "session_id", "attendance_date", name="uq_attendance_member_session_day"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    member_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    session_id = Column(Uuid, ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False)
    trainer_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    attendance_date = Column(Date, nullable=False)

    scheduled_start = Column(DateTime, nullable=False)
    scheduled_end = Column(DateTime, nullable=False)
    check_in_time = Column(DateTime, nullable=True)
    check_out_time = Column(DateTime, nullable=True)

    status = Column(String(20), nullable=False, default=STATUS_ABSENT)
    is_late = Column(Boolean, nullable=False, default=False)
    minutes_late = Column(Integer, nullable=True)
    is_early_departure = Column(Boolean, nullable=False, default=False)
    minutes_early = Column(Integer, nullable=True)

    attendance_method = Column(String(20), nullable=False, default=METHOD_QR_CODE)  # qr_code, manual
    token_id = Column(Uuid, ForeignKey("attendance_tokens.id", ondelete="SET NULL"), nullable=True)
    manual_override = Column(Boolean, nullable=False, default=False)  # Statut fixé par un coach/admin

    marked_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    last_modified_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def duration_minutes(self) -> Optional[int]:
        if self.check_in_time is None or self.check_out_time is None:
            return None
        return round((self.check_out_time - self.check_in_time).total_seconds() / 60)
