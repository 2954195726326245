from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from zefit import settings
from zefit.member_service import (
    add_package,
    add_payment,
    create_member,
    delete_member,
    derive_active_package,
    find_by_barcode,
    list_members,
    load_member_details,
    record_arrival,
    record_departure,
    search_members,
    update_member_info,
)
from zefit.models.member import Member, MembershipPeriod, Visit
from zefit.models.payment import Payment
from zefit.models.scheduling import SessionRosterEntry, Trainer, TrainingSession
from tests.helpers import (
    add_member,
    add_membership_type,
    add_period,
    add_trainer,
    add_training,
    add_visits,
    at,
)


def test_create_member_generates_unique_card_code(session):
    m1 = create_member(session, full_name="  Ana Anić ", phone="061 111 222")
    m2 = create_member(session, full_name="Marko Marić")

    assert m1.full_name == "Ana Anić"
    assert m1.card_code.startswith("ZF") and m1.card_code != m2.card_code
    assert m1.status == "active"

    with pytest.raises(ValueError, match="Card code"):
        create_member(session, full_name="Copy", card_code=m1.card_code)
    with pytest.raises(ValueError, match="Full name"):
        create_member(session, full_name="   ")


def _directory(session):
    add_member(session, "Ana Anić", card_code="ZF000111", phone="061 111 222")
    add_member(session, "Marko Marić", card_code="ZF000222", phone="062 333 444", status="inactive")
    add_member(session, "Ivana Ivić", card_code="AB000333", phone=None)
    return list_members(session)


def test_search_filters_are_case_insensitive_and_conjunctive(session):
    members = _directory(session)

    assert [m.full_name for m in search_members(members, name="ANA")] == ["Ivana Ivić", "Ana Anić"]
    assert [m.full_name for m in search_members(members, phone="333")] == ["Marko Marić"]
    assert [m.full_name for m in search_members(members, card_code="zf")] == ["Marko Marić", "Ana Anić"]
    assert [m.full_name for m in search_members(members, status="inactive")] == ["Marko Marić"]
    assert search_members(members, name="ana", status="inactive") == []
    assert len(search_members(members)) == 3


def test_barcode_lookup_selects_first_match_or_nothing(session):
    members = _directory(session)

    assert find_by_barcode(members, "000333").full_name == "Ivana Ivić"
    assert find_by_barcode(members, "zf000").full_name == "Marko Marić"
    assert find_by_barcode(members, "nope") is None
    assert find_by_barcode(members, "  ") is None


def test_derive_active_package_uses_first_active_with_end_date():
    now = datetime(2025, 11, 20, 10, 0)
    newest_open = MembershipPeriod(period_id=3, status="active", end_date=None, start_date=date(2025, 11, 19))
    current = MembershipPeriod(period_id=2, status="active", end_date=date(2025, 11, 25), start_date=date(2025, 11, 1))
    older = MembershipPeriod(period_id=1, status="active", end_date=date(2025, 12, 31), start_date=date(2025, 10, 1))

    result = derive_active_package([(newest_open, "Open"), (current, "Monthly"), (older, "Yearly")], now=now)
    # 4 days 14 hours rounds up to 5
    assert result["name"] == "Monthly"
    assert result["days_to_expiry"] == 5
    assert result["expired"] is False

    ended = MembershipPeriod(period_id=4, status="active", end_date=date(2025, 11, 10), start_date=date(2025, 10, 10))
    result = derive_active_package([(ended, "Monthly")], now=now)
    assert result["days_to_expiry"] <= 0 and result["expired"] is True

    assert derive_active_package([], now=now)["name"] is None
    assert derive_active_package([(MembershipPeriod(status="expired", end_date=date(2025, 12, 1)), "X")], now=now)[
        "days_to_expiry"
    ] is None


def test_update_member_info_overwrites_fields(session):
    member = add_member(session, "Ana Anić", phone="061")
    updated = update_member_info(
        session,
        member.member_id,
        full_name="Ana Anić-Babić",
        email="ana@example.com",
        phone="",
        note="Prefers mornings",
        card_code="HACK",
    )
    assert updated.full_name == "Ana Anić-Babić"
    assert updated.email == "ana@example.com"
    assert updated.phone is None
    assert updated.note == "Prefers mornings"
    assert updated.card_code != "HACK"

    with pytest.raises(ValueError, match="not found"):
        update_member_info(session, 999, full_name="Ghost")


def test_add_package_defaults_price_and_validates(session):
    monthly = add_membership_type(session, price="40.00")
    member = add_member(session, "Ana Anić")

    period = add_package(
        session,
        member_id=member.member_id,
        type_id=monthly.type_id,
        start_date=date(2025, 11, 1),
        end_date=date(2025, 11, 30),
    )
    assert period.price == Decimal("40.00")
    assert period.status == "active"

    custom = add_package(
        session,
        member_id=member.member_id,
        type_id=monthly.type_id,
        start_date=date(2025, 12, 1),
        end_date=date(2025, 12, 31),
        price="35,5",
    )
    assert custom.price == Decimal("35.50")

    with pytest.raises(ValueError, match="package type"):
        add_package(session, member_id=member.member_id, type_id=None, start_date=date(2025, 1, 1), end_date=None)
    with pytest.raises(ValueError, match="valid price"):
        add_package(
            session,
            member_id=member.member_id,
            type_id=monthly.type_id,
            start_date=date(2026, 1, 1),
            end_date=date(2026, 1, 31),
            price="abc",
        )
    with pytest.raises(ValueError, match="start"):
        add_package(
            session,
            member_id=member.member_id,
            type_id=monthly.type_id,
            start_date=date(2026, 2, 1),
            end_date=date(2026, 1, 1),
        )


def test_overlapping_packages_are_allowed_by_default(session, monkeypatch):
    """Overlap policy is undecided upstream: allowed unless the operator switch is on."""
    monkeypatch.setattr(settings, "REJECT_OVERLAPPING_PACKAGES", False)
    monthly = add_membership_type(session)
    member = add_member(session, "Ana Anić")
    kwargs = dict(member_id=member.member_id, type_id=monthly.type_id)

    add_package(session, start_date=date(2025, 11, 1), end_date=date(2025, 11, 30), **kwargs)
    add_package(session, start_date=date(2025, 11, 15), end_date=date(2025, 12, 15), **kwargs)
    assert session.query(MembershipPeriod).count() == 2

    with pytest.raises(ValueError, match="already has a package"):
        add_package(
            session,
            start_date=date(2025, 11, 20),
            end_date=date(2025, 11, 25),
            reject_overlap=True,
            **kwargs,
        )

    monkeypatch.setattr(settings, "REJECT_OVERLAPPING_PACKAGES", True)
    with pytest.raises(ValueError, match="already has a package"):
        add_package(session, start_date=date(2025, 12, 10), end_date=date(2025, 12, 20), **kwargs)
    add_package(session, start_date=date(2026, 1, 1), end_date=date(2026, 1, 31), **kwargs)


def test_add_payment_requires_package_and_positive_amount(session):
    monthly = add_membership_type(session)
    member = add_member(session, "Ana Anić")
    other = add_member(session, "Marko Marić")
    period = add_period(session, member, monthly, start=date(2025, 11, 1), end=date(2025, 11, 30))

    payment = add_payment(
        session,
        member_id=member.member_id,
        period_id=period.period_id,
        payment_date=date(2025, 11, 5),
    )
    assert payment.amount == Decimal("40.00")
    assert payment.payment_date == datetime(2025, 11, 5, 12, 0)

    with pytest.raises(ValueError, match="Select a package"):
        add_payment(session, member_id=member.member_id, period_id=None, amount="40")
    with pytest.raises(ValueError, match="amount"):
        add_payment(session, member_id=member.member_id, period_id=period.period_id, amount="forty")
    with pytest.raises(ValueError, match="amount"):
        add_payment(session, member_id=member.member_id, period_id=period.period_id, amount=-5)
    with pytest.raises(ValueError, match="Package not found"):
        add_payment(session, member_id=other.member_id, period_id=period.period_id, amount=40)


def test_load_member_details_orders_and_tags_result(session):
    monthly = add_membership_type(session, "Monthly")
    member = add_member(session, "Ana Anić")
    old = add_period(session, member, monthly, start=date(2025, 9, 1), end=date(2025, 9, 30), status="expired")
    new = add_period(session, member, monthly, start=date(2025, 11, 1), end=date(2025, 11, 30))
    add_payment(session, member_id=member.member_id, period_id=old.period_id, payment_date=date(2025, 9, 2))
    add_payment(session, member_id=member.member_id, period_id=new.period_id, payment_date=date(2025, 11, 2))

    details = load_member_details(session, member.member_id, now=datetime(2025, 11, 20, 0, 0))

    assert details["member_id"] == member.member_id
    assert [p["period_id"] for p in details["packages"]] == [new.period_id, old.period_id]
    assert [p["period_id"] for p in details["payments"]] == [new.period_id, old.period_id]
    assert details["payments"][0]["package_name"] == "Monthly"
    assert details["active_package"]["name"] == "Monthly"
    assert details["active_package"]["days_to_expiry"] == 10


def test_delete_member_cascades_everything(session):
    monthly = add_membership_type(session)
    coach = add_member(session, "Coach Carter")
    attendee = add_member(session, "Ana Anić")
    period = add_period(session, coach, monthly, start=date(2025, 11, 1), end=date(2025, 11, 30))
    add_payment(session, member_id=coach.member_id, period_id=period.period_id, amount=40)
    add_visits(session, coach, [at(date(2025, 11, 3), 9)])

    trainer = add_trainer(session, coach)
    own_session = add_training(session, trainer, at(date(2025, 11, 10), 9), roster=[attendee])

    other_trainer = add_trainer(session, add_member(session, "Other Coach"))
    other_session = add_training(session, other_trainer, at(date(2025, 11, 11), 9), roster=[coach, attendee])

    member_id = coach.member_id
    attendee_id = attendee.member_id
    own_session_id = own_session.session_id
    other_session_id = other_session.session_id
    delete_member(session, member_id)

    assert session.get(Member, member_id) is None
    for model in (Payment, MembershipPeriod, Visit, Trainer):
        assert session.scalars(select(model).where(model.member_id == member_id)).all() == []
    assert session.scalars(select(SessionRosterEntry).where(SessionRosterEntry.member_id == member_id)).all() == []
    assert session.get(TrainingSession, own_session_id) is None
    assert session.scalars(
        select(SessionRosterEntry).where(SessionRosterEntry.session_id == own_session_id)
    ).all() == []

    # other trainers' sessions and the other attendee stay
    remaining = session.scalars(
        select(SessionRosterEntry.member_id).where(SessionRosterEntry.session_id == other_session_id)
    ).all()
    assert remaining == [attendee_id]
    assert session.get(Member, attendee_id) is not None


def test_delete_member_rolls_back_on_failure(session, monkeypatch):
    monthly = add_membership_type(session)
    member = add_member(session, "Ana Anić")
    add_period(session, member, monthly, start=date(2025, 11, 1), end=date(2025, 11, 30))
    member_id = member.member_id

    original_execute = session.execute

    def _execute(stmt, *args, **kwargs):
        if getattr(stmt, "table", None) is not None and stmt.table.name == "visit":
            raise OperationalError("DELETE", {}, Exception("disk I/O error"))
        return original_execute(stmt, *args, **kwargs)

    monkeypatch.setattr(session, "execute", _execute)
    with pytest.raises(OperationalError):
        delete_member(session, member_id)
    monkeypatch.undo()

    assert session.get(Member, member_id) is not None
    assert session.query(MembershipPeriod).filter_by(member_id=member_id).count() == 1


def test_arrival_and_departure(session):
    member = add_member(session, "Ana Anić")
    arrived = datetime(2025, 11, 5, 8, 0)
    visit = record_arrival(session, member.member_id, at=arrived)
    assert visit.departure_time is None

    with pytest.raises(ValueError, match="before arrival"):
        record_departure(session, member.member_id, at=arrived - timedelta(minutes=1))

    closed = record_departure(session, member.member_id, at=arrived + timedelta(hours=1))
    assert closed.departure_time == arrived + timedelta(hours=1)

    with pytest.raises(ValueError, match="no open visit"):
        record_departure(session, member.member_id)


def test_update_member_info_accepts_non_string_values(session):
    member = add_member(session, "Ana Anić")

    updated = update_member_info(session, member.member_id, phone=61222333, note=0, full_name=" Ana ")

    assert updated.phone == "61222333"
    assert updated.note == "0"
    assert updated.full_name == "Ana"
    with pytest.raises(ValueError, match="Full name"):
        update_member_info(session, member.member_id, full_name=None)
