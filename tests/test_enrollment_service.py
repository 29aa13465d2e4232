"""
Tests du moteur d'inscription et de liste d'attente (base SQLite en mémoire).
"""

import uuid

import pytest
from sqlalchemy import func, select

from app.exceptions import AlreadyEnrolledError, InactiveError, NotEnrolledError, NotFoundError
from app.models.enrollment import ENROLLED, WAITLISTED, Enrollment
from app.models.notification import Notification
from app.services.enrollment_service import (
    cancel_enrollment,
    enroll_member,
    enrolled_member_ids,
    get_roster,
    is_enrolled,
)
from app.services.notification_service import WAITLIST_PROMOTED


def count_enrolled(db, session_id) -> int:
    return db.execute(
        select(func.count()).select_from(Enrollment)
        .where(Enrollment.session_id == session_id, Enrollment.status == ENROLLED)
    ).scalar()


# ============================================================
# enroll_member
# ============================================================

def test_inscription_place_disponible(db, make_session, make_user):
    """Place disponible → inscrit, compteur incrémenté."""
    session = make_session(capacity=2)
    member = make_user()

    result = enroll_member(db, session.id, member.id)

    assert result.status == ENROLLED
    assert result.position is None
    assert result.enrolled_count == 1
    assert result.capacity == 2
    assert is_enrolled(db, session.id, member.id)


def test_inscription_seance_complete_liste_attente(db, make_session, make_user):
    """Séance complète → liste d'attente en position 1, compteur inchangé."""
    session = make_session(capacity=1)
    enroll_member(db, session.id, make_user().id)
    late_member = make_user()

    result = enroll_member(db, session.id, late_member.id)

    assert result.status == WAITLISTED
    assert result.position == 1
    assert result.enrolled_count == 1
    assert not is_enrolled(db, session.id, late_member.id)


def test_capacite_jamais_depassee(db, make_session, make_user):
    """Plus de demandes que de places : enrolled_count == capacity, le reste en attente."""
    session = make_session(capacity=3)
    results = [enroll_member(db, session.id, make_user().id) for _ in range(5)]

    assert [r.status for r in results] == [ENROLLED] * 3 + [WAITLISTED] * 2
    assert [r.position for r in results[3:]] == [1, 2]
    db.refresh(session)
    assert session.enrolled_count == 3
    assert count_enrolled(db, session.id) == 3


def test_inscription_compteur_deja_plein(db, make_session, make_user):
    """Le compare-and-increment s'appuie sur le compteur en base, pas sur les lignes lues."""
    session = make_session(capacity=2)
    session.enrolled_count = 2
    db.commit()

    result = enroll_member(db, session.id, make_user().id)

    assert result.status == WAITLISTED
    assert result.enrolled_count == 2


def test_inscription_deja_inscrit(db, make_session, make_user):
    """Deuxième demande du même membre → AlreadyEnrolledError."""
    session = make_session(capacity=2)
    member = make_user()
    enroll_member(db, session.id, member.id)

    with pytest.raises(AlreadyEnrolledError) as exc:
        enroll_member(db, session.id, member.id)

    assert exc.value.status_code == 409
    db.refresh(session)
    assert session.enrolled_count == 1


def test_inscription_deja_en_liste_attente(db, make_session, make_user):
    """Un membre en liste d'attente ne peut pas redemander une place."""
    session = make_session(capacity=1)
    enroll_member(db, session.id, make_user().id)
    member = make_user()
    enroll_member(db, session.id, member.id)

    with pytest.raises(AlreadyEnrolledError):
        enroll_member(db, session.id, member.id)


def test_inscription_seance_inactive(db, make_session, make_user):
    session = make_session(is_active=False)
    with pytest.raises(InactiveError) as exc:
        enroll_member(db, session.id, make_user().id)
    assert exc.value.status_code == 410


def test_inscription_seance_introuvable(db, make_user):
    with pytest.raises(NotFoundError):
        enroll_member(db, uuid.uuid4(), make_user().id)


def test_inscription_membre_introuvable(db, make_session):
    session = make_session()
    with pytest.raises(NotFoundError):
        enroll_member(db, session.id, uuid.uuid4())


def test_inscription_coach_refuse_comme_membre(db, make_session, trainer):
    """Seuls les comptes de rôle member peuvent s'inscrire."""
    session = make_session()
    with pytest.raises(NotFoundError):
        enroll_member(db, session.id, trainer.id)


def test_inscription_membre_desactive(db, make_session, make_user):
    session = make_session()
    member = make_user(is_active=False)
    with pytest.raises(NotFoundError):
        enroll_member(db, session.id, member.id)


# ============================================================
# cancel_enrollment
# ============================================================

def test_promotion_apres_annulation(db, make_session, make_user):
    """Capacité 2 : A et B inscrits, C en attente ; A annule → C inscrit, compteur 2."""
    session = make_session(capacity=2)
    a, b, c = make_user(first_name="A"), make_user(first_name="B"), make_user(first_name="C")
    enroll_member(db, session.id, a.id)
    enroll_member(db, session.id, b.id)
    assert enroll_member(db, session.id, c.id).position == 1

    result = cancel_enrollment(db, session.id, a.id)

    assert result.previous_status == ENROLLED
    assert result.promoted_member_id == c.id
    assert result.new_enrolled_count == 2
    assert is_enrolled(db, session.id, c.id)
    assert not is_enrolled(db, session.id, a.id)
    assert set(enrolled_member_ids(db, session.id)) == {b.id, c.id}


def test_promotion_notifie_le_membre(db, make_session, make_user):
    session = make_session(capacity=1)
    a, b = make_user(), make_user()
    enroll_member(db, session.id, a.id)
    enroll_member(db, session.id, b.id)

    cancel_enrollment(db, session.id, a.id)

    notifications = db.execute(
        select(Notification).where(Notification.type == WAITLIST_PROMOTED)
    ).scalars().all()
    assert [n.recipient_id for n in notifications] == [b.id]
    assert notifications[0].data["session_id"] == str(session.id)


def test_promotion_ordre_arrivee(db, make_session, make_user):
    """La promotion suit l'ordre de la liste d'attente."""
    session = make_session(capacity=1)
    enrolled = make_user()
    first, second = make_user(), make_user()
    enroll_member(db, session.id, enrolled.id)
    enroll_member(db, session.id, first.id)
    enroll_member(db, session.id, second.id)

    result = cancel_enrollment(db, session.id, enrolled.id)

    assert result.promoted_member_id == first.id
    assert enroll_member(db, session.id, enrolled.id).position == 2


def test_annulation_sans_liste_attente(db, make_session, make_user):
    """Aucun membre en attente → place libérée, pas de promotion."""
    session = make_session(capacity=2)
    member = make_user()
    enroll_member(db, session.id, member.id)

    result = cancel_enrollment(db, session.id, member.id)

    assert result.promoted_member_id is None
    assert result.new_enrolled_count == 0


def test_annulation_liste_attente(db, make_session, make_user):
    """Annuler une place en liste d'attente ne touche pas au compteur."""
    session = make_session(capacity=1)
    enroll_member(db, session.id, make_user().id)
    waiting = make_user()
    enroll_member(db, session.id, waiting.id)

    result = cancel_enrollment(db, session.id, waiting.id)

    assert result.previous_status == WAITLISTED
    assert result.promoted_member_id is None
    assert result.new_enrolled_count == 1


def test_annulation_non_inscrit(db, make_session, make_user):
    session = make_session()
    with pytest.raises(NotEnrolledError):
        cancel_enrollment(db, session.id, make_user().id)


def test_double_annulation(db, make_session, make_user):
    session = make_session()
    member = make_user()
    enroll_member(db, session.id, member.id)
    cancel_enrollment(db, session.id, member.id)

    with pytest.raises(NotEnrolledError):
        cancel_enrollment(db, session.id, member.id)


def test_reinscription_fin_de_liste(db, make_session, make_user):
    """Réinscription après annulation = nouvelle demande, en fin de liste d'attente."""
    session = make_session(capacity=1)
    enroll_member(db, session.id, make_user().id)
    b, c = make_user(), make_user()
    enroll_member(db, session.id, b.id)
    enroll_member(db, session.id, c.id)

    cancel_enrollment(db, session.id, b.id)
    result = enroll_member(db, session.id, b.id)

    assert result.status == WAITLISTED
    assert result.position == 2


def test_annulations_conservees(db, make_session, make_user):
    """Les entrées annulées restent en base (historique)."""
    session = make_session()
    member = make_user()
    enroll_member(db, session.id, member.id)
    cancel_enrollment(db, session.id, member.id)
    enroll_member(db, session.id, member.id)

    statuses = db.execute(
        select(Enrollment.status).where(Enrollment.member_id == member.id).order_by(Enrollment.id)
    ).scalars().all()
    assert statuses == ["cancelled", ENROLLED]


# ============================================================
# get_roster
# ============================================================

def test_roster_inscrits_et_attente(db, make_session, make_user):
    session = make_session(capacity=1)
    enrolled = make_user(first_name="Inès")
    w1, w2, w3 = make_user(), make_user(), make_user()
    for m in (enrolled, w1, w2, w3):
        enroll_member(db, session.id, m.id)
    cancel_enrollment(db, session.id, w2.id)

    roster = get_roster(db, session.id)

    assert roster.enrolled_count == 1
    assert [e.member_id for e in roster.enrolled] == [enrolled.id]
    assert [e.member_id for e in roster.waitlist] == [w1.id, w3.id]
    assert [e.waitlist_position for e in roster.waitlist] == [1, 2]


def test_roster_seance_introuvable(db):
    with pytest.raises(NotFoundError):
        get_roster(db, uuid.uuid4())
