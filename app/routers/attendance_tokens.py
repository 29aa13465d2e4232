"""
Router d'administration des QR codes de présence.
"""

import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.attendance_token import TokenDeactivateRequest, TokenResponse
from app.services import token_service

router = APIRouter(prefix="/api/v1/attendance-tokens", tags=["QR codes de présence"])


@router.get("/active", response_model=List[TokenResponse], summary="QR codes actifs")
def list_active_tokens(requester_id: uuid.UUID, db: Session = Depends(get_db)):
    """Un coach voit ses propres QR codes, un administrateur les voit tous."""
    return token_service.list_active_tokens(db, requester_id)


@router.post("/{token_id}/deactivate", response_model=TokenResponse, summary="Désactiver un QR code")
def deactivate_token(token_id: uuid.UUID, data: TokenDeactivateRequest, db: Session = Depends(get_db)):
    return token_service.deactivate_token(db, token_id, data.actor_id)
