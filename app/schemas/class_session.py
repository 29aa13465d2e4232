"""
Schémas Pydantic pour le registre des séances de cours.

Note : on importe datetime en tant que module (dt) pour éviter le conflit de nommage
entre les champs `start_date` / `start_time` et les types du module datetime.
"""

import uuid
import datetime as dt
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator, model_validator

VALID_CLASS_TYPES = {
    "yoga", "pilates", "hiit", "cardio", "strength", "crossfit", "dance", "martial_arts", "swimming", "other",
}
MAX_CAPACITY = 100
REQUIRED_UPDATE_FIELDS = ("name", "start_time", "end_time", "capacity")


def _check_capacity(v: Optional[int]) -> Optional[int]:
    if v is not None and not 1 <= v <= MAX_CAPACITY:
        raise ValueError(f"La capacité doit être comprise entre 1 et {MAX_CAPACITY}.")
    return v


class SessionCreate(BaseModel):
    """Corps de requête pour programmer une séance (administrateur)."""
    name: str
    description: Optional[str] = None
    class_type: str = "other"
    trainer_id: uuid.UUID
    start_time: dt.time
    end_time: dt.time
    start_date: dt.date
    end_date: Optional[dt.date] = None
    day_of_week: Optional[int] = None  # 0 = lundi … 6 = dimanche
    room: Optional[str] = None
    capacity: int
    created_by: uuid.UUID

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Le nom de la séance ne peut pas être vide.")
        return v.strip()

    @field_validator("class_type")
    @classmethod
    def valid_class_type(cls, v: str) -> str:
        if v not in VALID_CLASS_TYPES:
            raise ValueError(f"Type de cours invalide. Valeurs acceptées : {VALID_CLASS_TYPES}")
        return v

    @field_validator("capacity")
    @classmethod
    def valid_capacity(cls, v: int) -> int:
        return _check_capacity(v)

    @field_validator("day_of_week")
    @classmethod
    def valid_day_of_week(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and not 0 <= v <= 6:
            raise ValueError("Le jour de la semaine doit être compris entre 0 (lundi) et 6 (dimanche).")
        return v

    @model_validator(mode="after")
    def check_schedule(self) -> "SessionCreate":
        if self.end_time <= self.start_time:
            raise ValueError("L'heure de fin doit être postérieure à l'heure de début.")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("La date de fin ne peut pas précéder la date de début.")
        return self


class SessionUpdate(BaseModel):
    """Champs modifiables d'une séance (administrateur). La capacité passe par le moteur d'inscription."""
    updated_by: uuid.UUID
    name: Optional[str] = None
    description: Optional[str] = None
    room: Optional[str] = None
    start_time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    end_date: Optional[dt.date] = None
    capacity: Optional[int] = None

    @field_validator("capacity")
    @classmethod
    def valid_capacity(cls, v: Optional[int]) -> Optional[int]:
        return _check_capacity(v)

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Le nom de la séance ne peut pas être vide.")
        return v.strip() if v is not None else v

    @model_validator(mode="after")
    def no_null_required_fields(self) -> "SessionUpdate":
        # Champs obligatoires : absents = inchangés, mais jamais null
        for field in REQUIRED_UPDATE_FIELDS:
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"Le champ {field} ne peut pas être null.")
        if self.start_time is not None and self.end_time is not None and self.end_time <= self.start_time:
            raise ValueError("L'heure de fin doit être postérieure à l'heure de début.")
        return self


class SessionResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: Optional[str]
    class_type: str
    trainer_id: uuid.UUID
    start_time: dt.time
    end_time: dt.time
    start_date: dt.date
    end_date: Optional[dt.date]
    day_of_week: Optional[int]
    room: Optional[str]
    capacity: int
    enrolled_count: int
    available_spots: int
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RosterEntry(BaseModel):
    """Membre inscrit ou en liste d'attente, pour la feuille de séance."""
    member_id: uuid.UUID
    first_name: Optional[str]
    last_name: Optional[str]
    status: str
    waitlist_position: Optional[int] = None
    enrolled_at: Optional[datetime] = None


class SessionRoster(BaseModel):
    session_id: uuid.UUID
    capacity: int
    enrolled_count: int
    enrolled: List[RosterEntry]
    waitlist: List[RosterEntry]
