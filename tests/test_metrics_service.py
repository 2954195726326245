from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from zefit import metrics_service, repository
from zefit.member_service import add_package, add_payment, create_member
from zefit.metrics_service import (
    NO_DATA,
    UNKNOWN_TYPE,
    average_membership_price,
    best_selling_membership_type,
    count_currently_present,
    daily_payment_series,
    get_dashboard_metrics,
    normalize_range,
    top_active_members,
)
from zefit.models.member import MembershipPeriod, MembershipType, Visit
from tests.helpers import (
    add_member,
    add_membership_type,
    add_payment_row,
    add_period,
    add_visits,
    at,
)

NOV_1 = date(2025, 11, 1)
NOV_30 = date(2025, 11, 30)


def test_normalize_range_covers_whole_days():
    start, end = normalize_range(NOV_1, NOV_30)
    assert start == datetime(2025, 11, 1, 0, 0, 0)
    assert end.date() == NOV_30
    assert (end.hour, end.minute, end.second) == (23, 59, 59)

    with pytest.raises(ValueError):
        normalize_range(NOV_30, NOV_1)


def test_new_member_count_is_inclusive_on_both_ends(session):
    add_member(session, "Before", created_at=datetime(2025, 10, 31, 23, 59, 59))
    add_member(session, "First second", created_at=datetime(2025, 11, 1, 0, 0, 0))
    add_member(session, "Last second", created_at=datetime(2025, 11, 30, 23, 59, 59))
    add_member(session, "After", created_at=datetime(2025, 12, 1, 0, 0, 0))

    metrics = get_dashboard_metrics(session, NOV_1, NOV_30, now=datetime(2025, 12, 1, 12, 0))
    assert metrics["new_member_count"] == 2


def test_average_price_is_mean_or_zero(session):
    assert average_membership_price([]) == Decimal("0.00")

    monthly = add_membership_type(session)
    member = add_member(session, "Ana Anić")
    for price, start in (("40", date(2025, 11, 2)), ("60", date(2025, 11, 10)), ("50", NOV_30)):
        add_period(session, member, monthly, start=start, end=start + timedelta(days=30), price=price)
    # started before the range, ignored
    add_period(session, member, monthly, start=date(2025, 10, 31), end=NOV_30, price="1000")

    metrics = get_dashboard_metrics(session, NOV_1, NOV_30, now=datetime(2025, 12, 1))
    assert metrics["average_membership_price"] == Decimal("50.00")


def test_best_seller_names_and_sentinels():
    periods = [MembershipPeriod(type_id=t, price=1) for t in (2, 1, 2, 1, 3)]
    names = {1: "Monthly", 2: "Quarterly", 3: "Day pass"}

    # 1 and 2 tie on two sales each; the lower id wins
    assert best_selling_membership_type(periods, names) == "Monthly"
    assert best_selling_membership_type(periods + [MembershipPeriod(type_id=2, price=1)], names) == "Quarterly"
    assert best_selling_membership_type([], names) == NO_DATA
    assert best_selling_membership_type([MembershipPeriod(type_id=9, price=1)], names) == UNKNOWN_TYPE


def test_payment_series_sums_to_total(session):
    member = add_member(session, "Ana Anić")
    add_payment_row(session, member, "40", at(date(2025, 11, 5), 12))
    add_payment_row(session, member, "15.50", at(date(2025, 11, 5), 18))
    add_payment_row(session, member, "20", at(date(2025, 11, 3), 9))
    add_payment_row(session, member, "99", at(date(2025, 12, 1), 0))

    metrics = get_dashboard_metrics(session, NOV_1, NOV_30, now=datetime(2025, 12, 1))
    series = metrics["daily_payment_series"]

    assert series == [(date(2025, 11, 3), Decimal("20")), (date(2025, 11, 5), Decimal("55.50"))]
    assert sum(total for _, total in series) == metrics["total_payments"] == Decimal("75.50")


def test_daily_payment_series_omits_empty_days():
    class _Row:
        def __init__(self, amount, when):
            self.amount = amount
            self.payment_date = when

    series = daily_payment_series([_Row(10, datetime(2025, 11, 9, 8)), _Row(5, datetime(2025, 11, 7, 8))])
    assert [day for day, _ in series] == [date(2025, 11, 7), date(2025, 11, 9)]


def test_visit_series_and_top_members(session):
    members = [add_member(session, name) for name in ("A", "B", "C", "D", "E", "F", "G")]
    for position, member in enumerate(members):
        # A visits 7 times, B 6 times, ... G once
        add_visits(session, member, [at(date(2025, 11, 1 + i), 8) for i in range(7 - position)])
    add_visits(session, members[6], [at(date(2025, 10, 20), 8)] * 10)  # outside the range

    metrics = get_dashboard_metrics(session, NOV_1, NOV_30, now=datetime(2025, 12, 1))

    top = metrics["top_active_members"]
    assert [row["name"] for row in top] == ["A", "B", "C", "D", "E"]
    counts = [row["visits"] for row in top]
    assert counts == sorted(counts, reverse=True)
    assert len(top) == 5 and all(c > 0 for c in counts)

    assert metrics["daily_visit_series"][0] == (date(2025, 11, 1), 7)
    assert metrics["daily_visit_series"][-1] == (date(2025, 11, 7), 1)
    assert metrics["attendance_chart"][0] == {"date": "01.11.", "count": 7}


def test_top_members_ties_go_to_lowest_member_id():
    visits = [Visit(member_id=mid, arrival_time=datetime(2025, 11, 3)) for mid in (8, 3, 8, 3, 5)]
    top = top_active_members(visits, {3: "Three", 5: "Five", 8: "Eight"})
    assert [row["member_id"] for row in top] == [3, 8, 5]


def test_expiring_soon_window_after_range_end(session):
    monthly = add_membership_type(session)
    soon = add_member(session, "Soon")
    later = add_member(session, "Later")
    gone = add_member(session, "Expired status")
    add_period(session, soon, monthly, start=date(2025, 11, 7), end=date(2025, 12, 7))
    add_period(session, later, monthly, start=date(2025, 11, 9), end=date(2025, 12, 9))
    add_period(session, gone, monthly, start=date(2025, 11, 1), end=date(2025, 12, 2), status="expired")

    metrics = get_dashboard_metrics(session, NOV_1, NOV_30, now=datetime(2025, 12, 1))
    assert [row["name"] for row in metrics["expiring_soon"]] == ["Soon"]


def test_currently_present_window():
    now = datetime(2025, 11, 20, 12, 0)
    visits = [
        Visit(member_id=1, arrival_time=now - timedelta(minutes=10)),
        Visit(member_id=2, arrival_time=now - timedelta(minutes=91)),
        Visit(
            member_id=3,
            arrival_time=now - timedelta(minutes=10),
            departure_time=now - timedelta(minutes=5),
        ),
        Visit(member_id=4, arrival_time=now - timedelta(minutes=90)),
    ]
    assert count_currently_present(visits, now) == 2


def test_currently_present_ignores_the_date_range(session):
    member = add_member(session, "Inside")
    now = datetime(2026, 1, 15, 10, 0)
    add_visits(session, member, [now - timedelta(minutes=30)], stay_minutes=None)

    metrics = get_dashboard_metrics(session, NOV_1, NOV_30, now=now)
    assert metrics["currently_present"] == 1
    assert metrics["daily_visit_series"] == []


def test_failing_metric_degrades_without_aborting_others(session, monkeypatch):
    member = add_member(session, "Ana Anić")
    add_payment_row(session, member, "40", at(date(2025, 11, 5), 12))

    def _broken(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection lost"))

    monkeypatch.setattr(repository, "visits_between", _broken)
    monkeypatch.setattr(repository, "membership_type_names", _broken)

    metrics = get_dashboard_metrics(session, NOV_1, NOV_30, now=datetime(2025, 12, 1))
    assert metrics["daily_visit_series"] == []
    assert metrics["top_active_members"] == []
    assert metrics["total_payments"] == Decimal("40")
    assert metrics["new_member_count"] == 1


def test_best_seller_resolves_type_name(session):
    monthly = add_membership_type(session, "Monthly")
    quarterly = add_membership_type(session, "Quarterly", price="110")
    member = add_member(session, "Ana Anić")
    add_period(session, member, quarterly, start=date(2025, 11, 3), end=date(2026, 2, 1))
    add_period(session, member, monthly, start=date(2025, 11, 4), end=date(2025, 12, 4))
    add_period(session, member, quarterly, start=date(2025, 11, 20), end=date(2026, 2, 18))

    metrics = get_dashboard_metrics(session, NOV_1, NOV_30, now=datetime(2025, 12, 1))
    assert metrics["best_selling_membership_type"] == "Quarterly"

    session.delete(session.get(MembershipType, quarterly.type_id))
    session.commit()
    metrics = metrics_service.get_dashboard_metrics(session, NOV_1, NOV_30, now=datetime(2025, 12, 1))
    assert metrics["best_selling_membership_type"] == UNKNOWN_TYPE


def test_registration_to_dashboard_scenario(session):
    monthly = add_membership_type(session, "Monthly", price="40.00")
    ana = create_member(session, full_name="Ana Anić", created_at=datetime(2025, 11, 3, 9, 0))
    period = add_package(
        session,
        member_id=ana.member_id,
        type_id=monthly.type_id,
        start_date=NOV_1,
        end_date=NOV_30,
        price="40",
    )
    add_payment(session, member_id=ana.member_id, period_id=period.period_id, amount="40", payment_date=date(2025, 11, 5))

    metrics = get_dashboard_metrics(session, NOV_1, NOV_30, now=datetime(2025, 12, 1))

    assert metrics["new_member_count"] >= 1
    assert metrics["average_membership_price"] == Decimal("40.00")
    assert metrics["total_payments"] == Decimal("40")
    assert (date(2025, 11, 5), Decimal("40")) in metrics["daily_payment_series"]
    assert metrics["best_selling_membership_type"] == "Monthly"
