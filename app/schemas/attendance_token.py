"""
Schémas Pydantic pour les tokens de présence (QR code de séance) et les scans.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from app.config import settings
from app.schemas.attendance import AttendanceRecordResponse

VALID_TOKEN_TYPES = {"checkin", "checkout", "both"}
VALID_SCAN_KINDS = {"checkin", "checkout"}


class TokenIssueRequest(BaseModel):
    """Corps de requête pour générer (ou récupérer) le QR code de présence d'une séance."""
    issuer_id: uuid.UUID
    session_type: str = "both"
    ttl_minutes: int = settings.TOKEN_DEFAULT_TTL_MINUTES
    max_usage: int = settings.TOKEN_DEFAULT_MAX_USAGE

    @field_validator("session_type")
    @classmethod
    def valid_session_type(cls, v: str) -> str:
        if v not in VALID_TOKEN_TYPES:
            raise ValueError(f"Type de session invalide. Valeurs acceptées : {VALID_TOKEN_TYPES}")
        return v

    @field_validator("ttl_minutes")
    @classmethod
    def valid_ttl(cls, v: int) -> int:
        if not 1 <= v <= settings.TOKEN_MAX_TTL_MINUTES:
            raise ValueError(f"La durée de validité doit être comprise entre 1 et {settings.TOKEN_MAX_TTL_MINUTES} minutes.")
        return v

    @field_validator("max_usage")
    @classmethod
    def valid_max_usage(cls, v: int) -> int:
        if not 1 <= v <= settings.TOKEN_MAX_USAGE_LIMIT:
            raise ValueError(f"Le nombre maximal de scans doit être compris entre 1 et {settings.TOKEN_MAX_USAGE_LIMIT}.")
        return v


class ScanStats(BaseModel):
    """Compteurs des scans enregistrés sur un token."""
    total_scans: int = 0
    checkins: int = 0
    checkouts: int = 0
    unique_members: int = 0


class TokenResponse(BaseModel):
    id: uuid.UUID
    session_id: uuid.UUID
    code: str
    issued_by: uuid.UUID
    expires_at: datetime
    max_usage: int
    usage_count: int
    remaining_usage: int
    session_type: str
    room: Optional[str]
    is_active: bool
    scan_stats: ScanStats = ScanStats()

    model_config = {"from_attributes": True}


class TokenIssueResponse(BaseModel):
    """Token de présence + image QR (data URL PNG) à afficher en salle."""
    token: TokenResponse
    created: bool              # False = token actif existant renvoyé tel quel
    qr_code_image: str


class TokenDeactivateRequest(BaseModel):
    actor_id: uuid.UUID


class ScanLocation(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class ScanRequest(BaseModel):
    """Scan du QR code de séance par un membre."""
    code: str
    member_id: uuid.UUID
    scan_kind: str = "checkin"
    location: Optional[ScanLocation] = None

    @field_validator("code")
    @classmethod
    def code_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Le QR code ne peut pas être vide.")
        return v.strip()

    @field_validator("scan_kind")
    @classmethod
    def valid_scan_kind(cls, v: str) -> str:
        if v not in VALID_SCAN_KINDS:
            raise ValueError(f"Type de scan invalide. Valeurs acceptées : {VALID_SCAN_KINDS}")
        return v


class ScanResponse(BaseModel):
    """Réponse après un scan réussi : état du registre pour la journée."""
    scan_kind: str
    scanned_at: datetime
    usage_count: int
    remaining_usage: int
    attendance: AttendanceRecordResponse
    scan_stats: ScanStats = ScanStats()
