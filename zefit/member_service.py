import logging
import math
import secrets
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from zefit import repository, settings
from zefit.models.member import Member, MembershipPeriod, MembershipType, Visit
from zefit.models.payment import Payment
from zefit.models.scheduling import SessionRosterEntry, Trainer, TrainingSession

logger = logging.getLogger(__name__)

MEMBER_STATUSES = ("active", "inactive")
EDITABLE_MEMBER_FIELDS = ("full_name", "email", "phone", "note", "status")
PERIOD_STATUSES = ("active", "expired", "pending")


def _blank_to_none(value) -> Optional[str]:
    if value is None:
        return None
    stripped = str(value).strip()
    return stripped or None


def _positive_amount(value, message: str) -> Decimal:
    """
    Accepts numbers or numeric strings; anything else, zero or negative
    raises ValueError with ``message``.
    """
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(message)
    if not amount.is_finite() or amount <= 0:
        raise ValueError(message)
    return amount


# ---------------------------
# 1. Registration / listing
# ---------------------------

def _generate_card_code(session: Session) -> str:
    while True:
        code = f"ZF{secrets.randbelow(10 ** 6):06d}"
        if not session.scalar(select(Member.member_id).where(Member.card_code == code)):
            return code


def create_member(
    session: Session,
    *,
    full_name: str,
    card_code: Optional[str] = None,
    phone: Optional[str] = None,
    email: Optional[str] = None,
    status: str = "active",
    note: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> Member:
    full_name = (full_name or "").strip()
    if not full_name:
        raise ValueError("Full name is required")
    if status not in MEMBER_STATUSES:
        raise ValueError(f"Unknown member status {status!r}")

    member = Member(
        card_code=_blank_to_none(card_code) or _generate_card_code(session),
        full_name=full_name,
        phone=_blank_to_none(phone),
        email=_blank_to_none(email),
        status=status,
        note=_blank_to_none(note),
        created_at=created_at or datetime.now(),
    )
    session.add(member)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ValueError("Card code already exists")
    session.refresh(member)
    logger.info("Registered member %s (%s)", member.member_id, member.card_code)
    return member


def list_members(session: Session) -> list[Member]:
    """All members, newest registration first."""
    return repository.list_members(session)


def list_membership_types(session: Session) -> list[MembershipType]:
    return repository.list_membership_types(session)


# ---------------------------
# 2. Search
# ---------------------------

def search_members(
    members: Iterable[Member],
    *,
    name: str = "",
    phone: str = "",
    card_code: str = "",
    status: str = "all",
) -> list[Member]:
    """
    In-memory filter: case-insensitive substring on name, phone and card code,
    exact match on status ("all" disables it). Active filters are ANDed.
    """
    name_q = name.strip().lower()
    phone_q = phone.strip().lower()
    code_q = card_code.strip().lower()

    results = []
    for m in members:
        if name_q and name_q not in m.full_name.lower():
            continue
        if phone_q and phone_q not in (m.phone or "").lower():
            continue
        if code_q and code_q not in m.card_code.lower():
            continue
        if status != "all" and m.status != status:
            continue
        results.append(m)
    return results


def find_by_barcode(members: Iterable[Member], barcode: str) -> Optional[Member]:
    """First member whose card code contains ``barcode``; None when nothing matches."""
    code = barcode.strip().lower()
    if not code:
        return None
    for m in members:
        if code in m.card_code.lower():
            return m
    return None


# ---------------------------
# 3. Profile details
# ---------------------------

def derive_active_package(
    packages: Iterable[tuple[MembershipPeriod, Optional[str]]],
    *,
    now: Optional[datetime] = None,
) -> dict:
    """
    Pick the first active package with an end date (packages arrive most
    recent start first) and compute whole days until it ends, rounded up.
    A non-positive ``days_to_expiry`` means the package has run out.
    """
    if now is None:
        now = datetime.now()
    for period, type_name in packages:
        if period.status == "active" and period.end_date is not None:
            remaining = datetime.combine(period.end_date, time.min) - now
            days = math.ceil(remaining.total_seconds() / 86400)
            return {
                "name": type_name or "Package",
                "period_id": period.period_id,
                "days_to_expiry": days,
                "expired": days <= 0,
            }
    return {"name": None, "period_id": None, "days_to_expiry": None, "expired": None}


def load_member_details(
    session: Session,
    member_id: int,
    *,
    now: Optional[datetime] = None,
) -> dict:
    """
    Packages and payments for one member. The result carries the
    ``member_id`` it was loaded for so a caller can drop a late answer for a
    member that is no longer selected.
    """
    member = session.get(Member, member_id)
    if not member:
        raise ValueError("Member not found")

    packages = repository.periods_for_member(session, member_id)
    package_names = {period.period_id: name or "Package" for period, name in packages}
    payments = repository.payments_for_member(session, member_id)

    return {
        "member_id": member_id,
        "member": member,
        "packages": [
            {
                "period_id": period.period_id,
                "name": package_names[period.period_id],
                "start_date": period.start_date,
                "end_date": period.end_date,
                "price": period.price,
                "status": period.status,
            }
            for period, _ in packages
        ],
        "payments": [
            {
                "payment_id": p.payment_id,
                "payment_date": p.payment_date,
                "amount": p.amount,
                "period_id": p.period_id,
                "package_name": package_names.get(p.period_id, "Package"),
            }
            for p in payments
        ],
        "active_package": derive_active_package(packages, now=now),
    }


# ---------------------------
# 4. Mutations
# ---------------------------

def update_member_info(
    session: Session,
    member_id: int,
    **changes,
) -> Member:
    """Overwrite personal fields. Last write wins; unknown keys are ignored."""
    member = session.get(Member, member_id)
    if not member:
        raise ValueError("Member not found")

    for key, value in changes.items():
        if key not in EDITABLE_MEMBER_FIELDS:
            continue
        if key == "full_name":
            value = _blank_to_none(value)
            if not value:
                raise ValueError("Full name is required")
        elif key == "status":
            if value not in MEMBER_STATUSES:
                raise ValueError(f"Unknown member status {value!r}")
        else:
            value = _blank_to_none(value)
        setattr(member, key, value)

    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Saving member %s failed", member_id)
        raise
    session.refresh(member)
    return member


def find_overlapping_periods(
    session: Session,
    member_id: int,
    start_date: date,
    end_date: date,
) -> list[MembershipPeriod]:
    stmt = select(MembershipPeriod).where(
        MembershipPeriod.member_id == member_id,
        MembershipPeriod.start_date <= end_date,
        (MembershipPeriod.end_date.is_(None)) | (MembershipPeriod.end_date >= start_date),
    )
    return list(session.scalars(stmt))


def add_package(
    session: Session,
    *,
    member_id: int,
    type_id: Optional[int],
    start_date: Optional[date],
    end_date: Optional[date],
    price=None,
    reject_overlap: Optional[bool] = None,
) -> MembershipPeriod:
    """
    Sell a package to a member. The price falls back to the type's default.
    Overlapping packages are accepted unless ``reject_overlap`` (or the
    ZEFIT_REJECT_OVERLAPPING_PACKAGES setting) says otherwise.
    """
    if not type_id or start_date is None or end_date is None:
        raise ValueError("Select a package type and a period (from-to)")
    if start_date > end_date:
        raise ValueError("Package start must not be after its end")

    member = session.get(Member, member_id)
    if not member:
        raise ValueError("Member not found")
    membership_type = repository.get_membership_type(session, type_id)
    if not membership_type:
        raise ValueError("Membership type not found")

    if price is None or (isinstance(price, str) and not price.strip()):
        price = membership_type.default_price
    amount = _positive_amount(price, "Enter a valid price")

    if reject_overlap is None:
        reject_overlap = settings.REJECT_OVERLAPPING_PACKAGES
    if reject_overlap and find_overlapping_periods(session, member_id, start_date, end_date):
        raise ValueError("Member already has a package in this period")

    period = MembershipPeriod(
        member_id=member_id,
        type_id=type_id,
        price=amount,
        start_date=start_date,
        end_date=end_date,
        status="active",
    )
    session.add(period)
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Adding package for member %s failed", member_id)
        raise
    session.refresh(period)
    return period


def add_payment(
    session: Session,
    *,
    member_id: int,
    period_id: Optional[int],
    amount=None,
    payment_date: Optional[date | datetime] = None,
) -> Payment:
    """
    Record a payment against one of the member's packages. The amount
    defaults to the package price; a bare date is stored at noon.
    """
    if not period_id:
        raise ValueError("Select a package for the payment")
    period = session.get(MembershipPeriod, period_id)
    if not period or period.member_id != member_id:
        raise ValueError("Package not found for this member")

    if amount is None or (isinstance(amount, str) and not amount.strip()):
        amount = period.price
    value = _positive_amount(amount, "Enter the payment amount")

    if payment_date is None:
        paid_at = datetime.now()
    elif isinstance(payment_date, datetime):
        paid_at = payment_date
    else:
        paid_at = datetime.combine(payment_date, time(12, 0))

    payment = Payment(
        member_id=member_id,
        period_id=period_id,
        amount=value,
        payment_date=paid_at,
    )
    session.add(payment)
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Adding payment for member %s failed", member_id)
        raise
    session.refresh(payment)
    return payment


def delete_member(session: Session, member_id: int) -> None:
    """
    Remove a member and everything that only exists for them, in a fixed
    order and in a single transaction: either every step is committed or
    none is.
    """
    member = session.get(Member, member_id)
    if not member:
        raise ValueError("Member not found")

    trainer_ids = list(
        session.scalars(select(Trainer.trainer_id).where(Trainer.member_id == member_id))
    )
    trainer_sessions = select(TrainingSession.session_id).where(
        TrainingSession.trainer_id.in_(trainer_ids)
    )

    steps = [
        ("roster links", delete(SessionRosterEntry).where(SessionRosterEntry.member_id == member_id)),
        (
            "rosters of trainer sessions",
            delete(SessionRosterEntry).where(SessionRosterEntry.session_id.in_(trainer_sessions)),
        ),
        (
            "training sessions",
            delete(TrainingSession).where(TrainingSession.trainer_id.in_(trainer_ids)),
        ),
        ("attendee roster links", delete(SessionRosterEntry).where(SessionRosterEntry.member_id == member_id)),
        ("payments", delete(Payment).where(Payment.member_id == member_id)),
        ("membership periods", delete(MembershipPeriod).where(MembershipPeriod.member_id == member_id)),
        ("visits", delete(Visit).where(Visit.member_id == member_id)),
        ("trainer record", delete(Trainer).where(Trainer.member_id == member_id)),
        ("member", delete(Member).where(Member.member_id == member_id)),
    ]

    step = None
    try:
        for step, stmt in steps:
            session.execute(stmt, execution_options={"synchronize_session": False})
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Deleting member %s failed at step %r, nothing was removed", member_id, step)
        raise
    session.expunge_all()
    logger.info("Deleted member %s with all related records", member_id)


# ---------------------------
# 5. Visits
# ---------------------------

def record_arrival(
    session: Session,
    member_id: int,
    *,
    at: Optional[datetime] = None,
) -> Visit:
    if not session.get(Member, member_id):
        raise ValueError("Member not found")
    visit = Visit(member_id=member_id, arrival_time=at or datetime.now())
    session.add(visit)
    session.commit()
    session.refresh(visit)
    return visit


def record_departure(
    session: Session,
    member_id: int,
    *,
    at: Optional[datetime] = None,
) -> Visit:
    visit = repository.open_visit_for_member(session, member_id)
    if not visit:
        raise ValueError("Member has no open visit")
    departure = at or datetime.now()
    if departure < visit.arrival_time:
        raise ValueError("Departure cannot be before arrival")
    visit.departure_time = departure
    session.commit()
    session.refresh(visit)
    return visit
