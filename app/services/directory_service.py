"""
Annuaire : lecture des utilisateurs (membres, coachs, administrateurs).

Les comptes sont gérés ailleurs ; le cœur n'a besoin que de l'identité,
du rôle et de l'état actif.
"""

import uuid

from sqlalchemy.orm import Session

from app.exceptions import ForbiddenError, NotFoundError
from app.models.class_session import ClassSession
from app.models.user import ROLE_ADMIN, ROLE_MEMBER, ROLE_TRAINER, User


def get_user(db: Session, user_id: uuid.UUID) -> User:
    """Retourne l'utilisateur actif, lève NotFoundError sinon."""
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError(f"Utilisateur {user_id} introuvable.", {"user_id": str(user_id)})
    return user


def get_member(db: Session, member_id: uuid.UUID) -> User:
    """Retourne un membre actif (rôle member), lève NotFoundError sinon."""
    user = db.get(User, member_id)
    if user is None or not user.is_active or user.role != ROLE_MEMBER:
        raise NotFoundError(f"Membre {member_id} introuvable.", {"member_id": str(member_id)})
    return user


def require_admin(user: User) -> None:
    if user.role != ROLE_ADMIN:
        raise ForbiddenError("Action réservée aux administrateurs.", {"role": user.role})


def require_session_staff(user: User, session: ClassSession) -> None:
    """Autorise l'administrateur ou le coach responsable de la séance."""
    if user.role == ROLE_ADMIN:
        return
    if user.role == ROLE_TRAINER and user.id == session.trainer_id:
        return
    raise ForbiddenError(
        "Seul le coach de la séance ou un administrateur peut effectuer cette action.",
        {"role": user.role, "session_id": str(session.id)},
    )


def is_staff(user: User) -> bool:
    return user.role in (ROLE_TRAINER, ROLE_ADMIN)
