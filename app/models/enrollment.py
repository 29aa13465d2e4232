"""
Modèle SQLAlchemy pour les inscriptions aux séances (inscrit / liste d'attente / annulé).

Les entrées annulées sont conservées (statut CANCELLED) pour l'historique.
L'index unique partiel garantit au plus une entrée non annulée par (séance, membre).
"""

import uuid
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Uuid, func, text

from app.database import Base

ENROLLED = "enrolled"
WAITLISTED = "waitlisted"
CANCELLED = "cancelled"


class Enrollment(Base):
    __tablename__ = "enrollments"
    __table_args__ = (
        Index(
            "uq_enrollments_active_member",
            "session_id",
            "member_id",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
        Index("ix_enrollments_session_status", "session_id", "status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Uuid, ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False)
    member_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False)           # enrolled, waitlisted, cancelled
    waitlist_position = Column(Integer, nullable=True)    # Ordre d'arrivée (clé de tri, trous autorisés)

    enrolled_at = Column(DateTime, nullable=True)
    promoted_at = Column(DateTime, nullable=True)         # Passage liste d'attente → inscrit
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
