"""
Tests d'intégration API pour le registre des présences (scan, marquage manuel,
consultation, statistiques).
"""

import uuid
from datetime import date, datetime
from unittest.mock import patch

from app.exceptions import DuplicateScanError, ExpiredError, ForbiddenError, NotEnrolledError, UsageExceededError
from app.schemas.attendance import AttendancePage, AttendanceRecordResponse, AttendanceStats
from app.schemas.attendance_token import ScanResponse, ScanStats


# --- Helpers ---

def make_record_response(**kwargs) -> AttendanceRecordResponse:
    return AttendanceRecordResponse(
        id=uuid.uuid4(),
        member_id=kwargs.get("member_id", uuid.uuid4()),
        session_id=kwargs.get("session_id", uuid.uuid4()),
        attendance_date=date(2026, 3, 2),
        scheduled_start=datetime(2026, 3, 2, 9, 0),
        scheduled_end=datetime(2026, 3, 2, 10, 0),
        check_in_time=kwargs.get("check_in_time", datetime(2026, 3, 2, 9, 12)),
        check_out_time=None,
        status=kwargs.get("status", "late"),
        is_late=kwargs.get("is_late", True),
        minutes_late=kwargs.get("minutes_late", 12),
        is_early_departure=False,
        minutes_early=None,
        duration_minutes=None,
        attendance_method=kwargs.get("attendance_method", "qr_code"),
        manual_override=kwargs.get("manual_override", False),
        notes=None,
    )


def scan_payload(**overrides) -> dict:
    payload = {"code": "a" * 64, "member_id": str(uuid.uuid4())}
    payload.update(overrides)
    return payload


# ============================================================
# POST /api/v1/attendance/scan
# ============================================================

def test_scan_succes(client):
    with patch("app.routers.attendance.token_service.scan_token") as mock:
        mock.return_value = ScanResponse(
            scan_kind="checkin",
            scanned_at=datetime(2026, 3, 2, 9, 12),
            usage_count=1,
            remaining_usage=99,
            attendance=make_record_response(),
            scan_stats=ScanStats(total_scans=5, checkins=4, checkouts=1, unique_members=4),
        )
        response = client.post("/api/v1/attendance/scan", json=scan_payload())

    assert response.status_code == 200
    body = response.json()
    assert body["usage_count"] == 1
    assert body["attendance"]["status"] == "late"
    assert body["attendance"]["minutes_late"] == 12
    assert body["scan_stats"] == {"total_scans": 5, "checkins": 4, "checkouts": 1, "unique_members": 4}


def test_scan_type_invalide(client):
    response = client.post("/api/v1/attendance/scan", json=scan_payload(scan_kind="pause"))
    assert response.status_code == 422


def test_scan_code_vide(client):
    response = client.post("/api/v1/attendance/scan", json=scan_payload(code="   "))
    assert response.status_code == 422


def test_scan_token_expire(client):
    with patch("app.routers.attendance.token_service.scan_token") as mock:
        mock.side_effect = ExpiredError("Ce QR code a expiré.", {"expires_at": "2026-03-02T09:20:00"})
        response = client.post("/api/v1/attendance/scan", json=scan_payload())

    assert response.status_code == 410
    assert response.json()["code"] == "EXPIRED"


def test_scan_plafond_atteint(client):
    with patch("app.routers.attendance.token_service.scan_token") as mock:
        mock.side_effect = UsageExceededError(
            "Ce QR code a atteint son nombre maximal de scans.", {"usage_count": 3, "max_usage": 3},
        )
        response = client.post("/api/v1/attendance/scan", json=scan_payload())

    assert response.status_code == 409
    assert response.json()["code"] == "USAGE_EXCEEDED"
    assert response.json()["details"] == {"usage_count": 3, "max_usage": 3}


def test_scan_en_double(client):
    with patch("app.routers.attendance.token_service.scan_token") as mock:
        mock.side_effect = DuplicateScanError("Vous avez déjà enregistré votre arrivée pour cette séance.")
        response = client.post("/api/v1/attendance/scan", json=scan_payload())

    assert response.status_code == 409
    assert response.json()["code"] == "DUPLICATE_SCAN"


def test_scan_non_inscrit(client):
    with patch("app.routers.attendance.token_service.scan_token") as mock:
        mock.side_effect = NotEnrolledError("Vous n'êtes pas inscrit à cette séance.")
        response = client.post("/api/v1/attendance/scan", json=scan_payload())

    assert response.status_code == 409
    assert response.json()["code"] == "NOT_ENROLLED"


# ============================================================
# POST /api/v1/attendance/manual
# ============================================================

def test_manual_succes(client):
    with patch("app.routers.attendance.attendance_service.mark_manually") as mock:
        mock.return_value = make_record_response(
            status="excused", attendance_method="manual", manual_override=True,
            check_in_time=None, is_late=False, minutes_late=None,
        )
        response = client.post("/api/v1/attendance/manual", json={
            "session_id": str(uuid.uuid4()),
            "member_id": str(uuid.uuid4()),
            "status": "excused",
            "marked_by": str(uuid.uuid4()),
            "date": "2026-03-02",
        })

    assert response.status_code == 200
    assert response.json()["status"] == "excused"
    assert response.json()["manual_override"] is True


def test_manual_statut_invalide(client):
    response = client.post("/api/v1/attendance/manual", json={
        "session_id": str(uuid.uuid4()),
        "member_id": str(uuid.uuid4()),
        "status": "malade",
        "marked_by": str(uuid.uuid4()),
    })
    assert response.status_code == 422


def test_manual_interdit(client):
    with patch("app.routers.attendance.attendance_service.mark_manually") as mock:
        mock.side_effect = ForbiddenError("Seul le coach de la séance ou un administrateur peut effectuer cette action.")
        response = client.post("/api/v1/attendance/manual", json={
            "session_id": str(uuid.uuid4()),
            "member_id": str(uuid.uuid4()),
            "status": "present",
            "marked_by": str(uuid.uuid4()),
        })

    assert response.status_code == 403


# ============================================================
# GET /api/v1/attendance/stats et /api/v1/attendance
# ============================================================

def test_stats_succes(client):
    session_id = uuid.uuid4()
    with patch("app.routers.attendance.attendance_service.get_stats") as mock:
        mock.return_value = AttendanceStats(
            total=3, present=1, absent=1, late=1, excused=0, cancelled=0,
            qr_code_scans=2, manual_entries=1, avg_duration_minutes=45.0, attendance_rate=66.67,
        )
        response = client.get(
            f"/api/v1/attendance/stats?requester_id={uuid.uuid4()}&session_id={session_id}&start_date=2026-03-01"
        )

    assert response.status_code == 200
    assert response.json()["attendance_rate"] == 66.67
    filters = mock.call_args.args[2]
    assert filters.session_id == session_id
    assert filters.start_date == date(2026, 3, 1)


def test_stats_sans_requester(client):
    response = client.get("/api/v1/attendance/stats")
    assert response.status_code == 422


def test_stats_membre_interdit(client):
    with patch("app.routers.attendance.attendance_service.get_stats") as mock:
        mock.side_effect = ForbiddenError("Statistiques réservées aux coachs et administrateurs.")
        response = client.get(f"/api/v1/attendance/stats?requester_id={uuid.uuid4()}")

    assert response.status_code == 403


def test_list_records_succes(client):
    with patch("app.routers.attendance.attendance_service.list_records") as mock:
        mock.return_value = AttendancePage(items=[make_record_response()], page=2, limit=10, total=11, pages=2)
        response = client.get(f"/api/v1/attendance?requester_id={uuid.uuid4()}&page=2&limit=10&status=late")

    assert response.status_code == 200
    assert response.json()["total"] == 11
    assert len(response.json()["items"]) == 1
    assert mock.call_args.args[2].status == "late"
    assert mock.call_args.args[3:] == (2, 10)


def test_list_records_limite_trop_grande(client):
    response = client.get(f"/api/v1/attendance?requester_id={uuid.uuid4()}&limit=500")
    assert response.status_code == 422
