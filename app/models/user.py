"""
Modèle SQLAlchemy pour les utilisateurs (membres, coachs, administrateurs).

Table gérée par le module comptes : le cœur ne fait que la lire
(annuaire : rôle, nom, compte actif). Pas de champs d'authentification ici.
"""

import uuid
from sqlalchemy import Boolean, Column, DateTime, String, Uuid, func

from app.database import Base

ROLE_MEMBER = "member"
ROLE_TRAINER = "trainer"
ROLE_ADMIN = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    role = Column(String(20), nullable=False, default=ROLE_MEMBER)  # member, trainer, admin
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
