"""
Tests de l'émission des notifications (fire-and-forget).
"""

from unittest.mock import MagicMock

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.models.notification import Notification
from app.services.notification_service import (
    SESSION_SCHEDULED,
    notify_session_cancelled,
    notify_session_scheduled,
)


def test_notify_session_scheduled_coach(db, make_session, trainer):
    session = make_session()

    sent = notify_session_scheduled(db, session, [])

    assert sent == 1
    notification = db.execute(select(Notification)).scalar_one()
    assert notification.type == SESSION_SCHEDULED
    assert notification.recipient_id == trainer.id
    assert notification.data["start_time"] == "09:00"
    assert notification.is_read is False


def test_notify_destinataires_dedoublonnes(db, make_session, make_user, trainer):
    session = make_session()
    member = make_user()

    sent = notify_session_cancelled(db, session, [member.id, member.id, trainer.id])

    assert sent == 2


def test_notify_echec_journalise_sans_propager(make_session, caplog):
    """Un échec d'écriture est annulé et journalisé, jamais propagé à l'appelant."""
    session = make_session()
    failing_db = MagicMock()
    failing_db.commit.side_effect = OperationalError("INSERT", {}, Exception("base indisponible"))

    sent = notify_session_cancelled(failing_db, session, [])

    assert sent == 0
    failing_db.rollback.assert_called_once()
    assert "session_cancelled" in caplog.text
