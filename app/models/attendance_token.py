"""
Modèles SQLAlchemy pour les tokens de présence (QR code de séance) et leurs scans.

- Un seul token actif par séance (index unique partiel)
- Un même couple (membre, type de scan) au plus une fois par token (contrainte unique)
"""

import uuid
from datetime import datetime
from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid, func, text,
)

from app.database import Base

SCAN_CHECKIN = "checkin"
SCAN_CHECKOUT = "checkout"
TOKEN_TYPE_BOTH = "both"


class AttendanceToken(Base):
    __tablename__ = "attendance_tokens"
    __table_args__ = (
        Index(
            "uq_attendance_tokens_active_session",
            "session_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(Uuid, ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False)
    code = Column(String(64), unique=True, nullable=False)     # 32 octets aléatoires en hexadécimal
    issued_by = Column(Uuid, ForeignKey("users.id"), nullable=False)

    expires_at = Column(DateTime, nullable=False)
    max_usage = Column(Integer, nullable=False)
    usage_count = Column(Integer, nullable=False, default=0)
    session_type = Column(String(20), nullable=False, default=TOKEN_TYPE_BOTH)  # checkin, checkout, both
    room = Column(String(100), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())
    deactivated_at = Column(DateTime, nullable=True)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def has_reached_max_usage(self) -> bool:
        return (self.usage_count or 0) >= self.max_usage

    def is_valid_for_scanning(self, now: datetime) -> bool:
        return bool(self.is_active) and not self.is_expired(now) and not self.has_reached_max_usage()

    def accepts(self, scan_kind: str) -> bool:
        return self.session_type == TOKEN_TYPE_BOTH or self.session_type == scan_kind

    @property
    def remaining_usage(self) -> int:
        return max(0, self.max_usage - (self.usage_count or 0))


class TokenScan(Base):
    """Scan d'un token par un membre (append-only)."""
    __tablename__ = "token_scans"
    __table_args__ = (
        UniqueConstraint("token_id", "member_id", "scan_kind", name="uq_token_scans_member_kind"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_id = Column(Uuid, ForeignKey("attendance_tokens.id", ondelete="CASCADE"), nullable=False)
    member_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    scan_kind = Column(String(20), nullable=False)  # checkin, checkout
    scanned_at = Column(DateTime, nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
