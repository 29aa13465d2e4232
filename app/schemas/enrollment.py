"""
Schémas Pydantic pour les inscriptions et la liste d'attente.
"""

import uuid
from typing import Optional

from pydantic import BaseModel


class EnrollmentRequest(BaseModel):
    """Corps de requête pour s'inscrire à une séance ou annuler son inscription."""
    member_id: uuid.UUID


class EnrollmentResult(BaseModel):
    """Résultat d'une demande d'inscription."""
    session_id: uuid.UUID
    member_id: uuid.UUID
    status: str                     # enrolled, waitlisted
    position: Optional[int] = None  # Position en liste d'attente (si waitlisted)
    enrolled_count: int
    capacity: int


class CancellationResult(BaseModel):
    """Résultat d'une annulation (promotion éventuelle depuis la liste d'attente)."""
    session_id: uuid.UUID
    member_id: uuid.UUID
    previous_status: str
    new_enrolled_count: int
    promoted_member_id: Optional[uuid.UUID] = None
