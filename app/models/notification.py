"""
Modèle SQLAlchemy des notifications émises vers le module de notification
(séance programmée / annulée, promotion depuis la liste d'attente).
"""

import uuid
from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, Text, Uuid, func

from app.database import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    recipient_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(30), nullable=False)  # session_scheduled, session_cancelled, waitlist_promoted
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, server_default=func.now())
