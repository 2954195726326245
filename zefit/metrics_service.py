from __future__ import annotations

import logging
from collections import Counter, defaultdict
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Iterable, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zefit import repository, settings
from zefit.models.member import Member, MembershipPeriod, Visit
from zefit.models.payment import Payment

logger = logging.getLogger(__name__)

TOP_ACTIVE_LIMIT = 5
NO_DATA = "no data"
UNKNOWN_TYPE = "unknown"
UNKNOWN_MEMBER = "Unknown member"

_CENT = Decimal("0.01")

T = TypeVar("T")


def _to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def normalize_range(date_from: date, date_to: date) -> tuple[datetime, datetime]:
    """Calendar dates -> [from 00:00:00, to 23:59:59.999999]."""
    if date_from > date_to:
        raise ValueError("Range start must not be after range end")
    return datetime.combine(date_from, time.min), datetime.combine(date_to, time.max)


# ---------------------------
# Pure aggregations over snapshots
# ---------------------------

def count_new_members(members: Iterable[Member], start: datetime, end: datetime) -> int:
    return sum(1 for m in members if start <= m.created_at <= end)


def average_membership_price(periods: Iterable[MembershipPeriod]) -> Decimal:
    prices = [_to_decimal(p.price) for p in periods]
    if not prices:
        return Decimal("0.00")
    return (sum(prices) / len(prices)).quantize(_CENT, rounding=ROUND_HALF_UP)


def best_selling_membership_type(
    periods: Iterable[MembershipPeriod],
    type_names: dict[int, str],
) -> str:
    """
    Name of the type with the most periods. Ties go to the lowest type id.
    Returns NO_DATA for an empty snapshot and UNKNOWN_TYPE when the winning
    type no longer exists.
    """
    counts = Counter(p.type_id for p in periods)
    if not counts:
        return NO_DATA
    type_id, _ = min(counts.items(), key=lambda item: (-item[1], item[0]))
    return type_names.get(type_id, UNKNOWN_TYPE)


def total_payments(payments: Iterable[Payment]) -> Decimal:
    return sum((_to_decimal(p.amount) for p in payments), Decimal("0"))


def daily_payment_series(payments: Iterable[Payment]) -> list[tuple[date, Decimal]]:
    """Per-day payment totals, ascending; days without payments are omitted."""
    per_day: dict[date, Decimal] = defaultdict(Decimal)
    for p in payments:
        per_day[p.payment_date.date()] += _to_decimal(p.amount)
    return sorted(per_day.items())


def daily_visit_series(visits: Iterable[Visit]) -> list[tuple[date, int]]:
    per_day = Counter(v.arrival_time.date() for v in visits)
    return sorted(per_day.items())


def top_active_members(
    visits: Iterable[Visit],
    names: dict[int, str],
    *,
    limit: int = TOP_ACTIVE_LIMIT,
) -> list[dict]:
    """Most frequent visitors, by visit count descending, ties to the lowest member id."""
    counts = Counter(v.member_id for v in visits)
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:limit]
    return [
        {
            "member_id": member_id,
            "name": names.get(member_id, UNKNOWN_MEMBER),
            "visits": count,
        }
        for member_id, count in ranked
    ]


def expiring_soon(
    periods: Iterable[MembershipPeriod],
    range_end: date,
    names: dict[int, str],
    *,
    days: int = settings.EXPIRING_SOON_DAYS,
) -> list[dict]:
    horizon = range_end + timedelta(days=days)
    result = []
    for p in periods:
        if p.status != "active" or p.end_date is None:
            continue
        if range_end <= p.end_date <= horizon:
            result.append(
                {
                    "period_id": p.period_id,
                    "member_id": p.member_id,
                    "name": names.get(p.member_id, UNKNOWN_MEMBER),
                    "end_date": p.end_date,
                }
            )
    result.sort(key=lambda row: (row["end_date"], row["period_id"]))
    return result


def count_currently_present(
    visits: Iterable[Visit],
    now: datetime,
    *,
    window_minutes: int = settings.PRESENCE_WINDOW_MINUTES,
) -> int:
    since = now - timedelta(minutes=window_minutes)
    return sum(
        1
        for v in visits
        if v.departure_time is None and since <= v.arrival_time <= now
    )


def attendance_chart_points(series: Iterable[tuple[date, int]]) -> list[dict]:
    """Daily visit series in the shape the attendance chart consumes."""
    return [{"date": day.strftime("%d.%m."), "count": count} for day, count in series]


# ---------------------------
# Dashboard
# ---------------------------

def _degrade(session: Session, metric: str, fallback: T, compute: Callable[[], T]) -> T:
    """Run one metric; a store failure yields the fallback instead of aborting the rest."""
    try:
        return compute()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.warning("Dashboard metric %s failed, showing empty value: %s", metric, exc)
        return fallback


def get_dashboard_metrics(
    session: Session,
    date_from: date,
    date_to: date,
    *,
    now: Optional[datetime] = None,
) -> dict:
    """
    Dashboard summary for the inclusive calendar range [date_from, date_to].

    Each metric is loaded independently; "currently_present" is always
    relative to ``now`` and ignores the range.
    """
    if now is None:
        now = datetime.now()
    start, end = normalize_range(date_from, date_to)

    def _new_members() -> int:
        return count_new_members(repository.members_created_between(session, start, end), start, end)

    def _periods() -> list[MembershipPeriod]:
        return repository.periods_started_between(session, date_from, date_to)

    def _best_seller() -> str:
        periods = _periods()
        names = repository.membership_type_names(session, {p.type_id for p in periods})
        return best_selling_membership_type(periods, names)

    payments = _degrade(
        session, "payments", [], lambda: repository.payments_between(session, start, end)
    )
    visits = _degrade(
        session, "visits", [], lambda: repository.visits_between(session, start, end)
    )

    def _top_members() -> list[dict]:
        names = repository.member_names(session, {v.member_id for v in visits})
        return top_active_members(visits, names)

    def _expiring() -> list[dict]:
        horizon = date_to + timedelta(days=settings.EXPIRING_SOON_DAYS)
        periods = repository.active_periods_ending_between(session, date_to, horizon)
        names = repository.member_names(session, {p.member_id for p in periods})
        return expiring_soon(periods, date_to, names)

    def _present() -> int:
        since = now - timedelta(minutes=settings.PRESENCE_WINDOW_MINUTES)
        return count_currently_present(repository.open_visits_since(session, since), now)

    visit_series = daily_visit_series(visits)
    return {
        "range": {"from": date_from, "to": date_to},
        "new_member_count": _degrade(session, "new_member_count", 0, _new_members),
        "average_membership_price": _degrade(
            session,
            "average_membership_price",
            Decimal("0.00"),
            lambda: average_membership_price(_periods()),
        ),
        "best_selling_membership_type": _degrade(
            session, "best_selling_membership_type", NO_DATA, _best_seller
        ),
        "total_payments": total_payments(payments),
        "daily_payment_series": daily_payment_series(payments),
        "daily_visit_series": visit_series,
        "attendance_chart": attendance_chart_points(visit_series),
        "top_active_members": _degrade(session, "top_active_members", [], _top_members),
        "expiring_soon": _degrade(session, "expiring_soon", [], _expiring),
        "currently_present": _degrade(session, "currently_present", 0, _present),
    }
