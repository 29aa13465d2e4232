"""
Tests du job planifié de balayage des QR codes expirés.
"""

from unittest.mock import MagicMock, patch

from app.scheduler import _sweep_expired_tokens, scheduler, start_scheduler, stop_scheduler


def test_sweep_job_ferme_la_session():
    mock_db = MagicMock()
    with patch("app.scheduler.SessionLocal", return_value=mock_db), \
            patch("app.services.token_service.sweep_expired_tokens", return_value=2) as sweep:
        _sweep_expired_tokens()

    sweep.assert_called_once_with(mock_db)
    mock_db.close.assert_called_once()


def test_sweep_job_erreur_journalisee(caplog):
    """Une erreur du job est journalisée sans arrêter le planificateur."""
    mock_db = MagicMock()
    with patch("app.scheduler.SessionLocal", return_value=mock_db), \
            patch("app.services.token_service.sweep_expired_tokens", side_effect=RuntimeError("timeout")):
        _sweep_expired_tokens()

    mock_db.rollback.assert_called_once()
    mock_db.close.assert_called_once()
    assert "timeout" in caplog.text


def test_start_stop_scheduler():
    start_scheduler()
    try:
        job = scheduler.get_job("attendance_token_sweep")
        assert job is not None
    finally:
        stop_scheduler()
    assert not scheduler.running
