"""
Modèle SQLAlchemy pour les séances de cours (registre des séances).

enrolled_count n'est modifié que par le moteur d'inscription, via des UPDATE
conditionnels (voir enrollment_service) : la contrainte CHECK garantit
0 <= enrolled_count <= capacity même en cas de bug applicatif.
"""

import uuid
from sqlalchemy import (
    Boolean, CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, String, Text, Time, Uuid, func,
)

from app.database import Base


class ClassSession(Base):
    __tablename__ = "class_sessions"
    __table_args__ = (
        CheckConstraint("capacity >= 1", name="ck_class_sessions_capacity_positive"),
        CheckConstraint(
            "enrolled_count >= 0 AND enrolled_count <= capacity",
            name="ck_class_sessions_enrolled_within_capacity",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    class_type = Column(String(30), nullable=False, default="other")  # yoga, hiit, strength…
    trainer_id = Column(Uuid, ForeignKey("users.id"), nullable=False)

    # Créneau horaire + dates d'application
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)         # NULL = séance ponctuelle ou récurrence ouverte
    day_of_week = Column(Integer, nullable=True)   # 0 = lundi … 6 = dimanche, NULL = ponctuelle

    room = Column(String(100), nullable=True)
    capacity = Column(Integer, nullable=False)
    enrolled_count = Column(Integer, nullable=False, default=0)
    waitlist_seq = Column(Integer, nullable=False, default=0)  # Dernière position de liste d'attente attribuée

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def available_spots(self) -> int:
        return max(0, self.capacity - (self.enrolled_count or 0))

    def occurs_on(self, day) -> bool:
        """Indique si la séance a lieu à la date donnée."""
        if day < self.start_date:
            return False
        if self.day_of_week is None:
            return day == self.start_date if self.end_date is None else day <= self.end_date
        if self.end_date is not None and day > self.end_date:
            return False
        return day.weekday() == self.day_of_week
