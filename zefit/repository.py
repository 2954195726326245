"""
Query façade over the ZeFit tables.

Every read here has a fixed result shape: one-to-one reads return a row or
None, one-to-many reads return a list (possibly empty). Callers never have to
guess whether a related record came back as a single object or a list.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from zefit.models.member import Member, MembershipPeriod, MembershipType, Visit
from zefit.models.payment import Payment
from zefit.models.scheduling import SessionRosterEntry, Trainer, TrainingSession


# ---------------------------
# Members
# ---------------------------

def list_members(session: Session) -> list[Member]:
    stmt = select(Member).order_by(Member.created_at.desc(), Member.member_id.desc())
    return list(session.scalars(stmt))


def list_active_members(session: Session) -> list[Member]:
    stmt = (
        select(Member)
        .where(Member.status == "active")
        .order_by(Member.full_name)
    )
    return list(session.scalars(stmt))


def members_created_between(session: Session, start: datetime, end: datetime) -> list[Member]:
    stmt = select(Member).where(Member.created_at >= start, Member.created_at <= end)
    return list(session.scalars(stmt))


def member_names(session: Session, member_ids: Iterable[int]) -> dict[int, str]:
    ids = set(member_ids)
    if not ids:
        return {}
    stmt = select(Member.member_id, Member.full_name).where(Member.member_id.in_(ids))
    return {mid: name for mid, name in session.execute(stmt).all()}


# ---------------------------
# Packages / payments / visits
# ---------------------------

def get_membership_type(session: Session, type_id: int) -> Optional[MembershipType]:
    return session.get(MembershipType, type_id)


def list_membership_types(session: Session) -> list[MembershipType]:
    return list(session.scalars(select(MembershipType).order_by(MembershipType.name)))


def membership_type_names(session: Session, type_ids: Iterable[int]) -> dict[int, str]:
    ids = set(type_ids)
    if not ids:
        return {}
    stmt = select(MembershipType.type_id, MembershipType.name).where(
        MembershipType.type_id.in_(ids)
    )
    return {tid: name for tid, name in session.execute(stmt).all()}


def periods_started_between(
    session: Session,
    start_date: date,
    end_date: date,
) -> list[MembershipPeriod]:
    stmt = (
        select(MembershipPeriod)
        .where(
            MembershipPeriod.start_date >= start_date,
            MembershipPeriod.start_date <= end_date,
        )
        .order_by(MembershipPeriod.period_id)
    )
    return list(session.scalars(stmt))


def active_periods_ending_between(
    session: Session,
    start_date: date,
    end_date: date,
) -> list[MembershipPeriod]:
    stmt = (
        select(MembershipPeriod)
        .where(
            MembershipPeriod.status == "active",
            MembershipPeriod.end_date.is_not(None),
            MembershipPeriod.end_date >= start_date,
            MembershipPeriod.end_date <= end_date,
        )
        .order_by(MembershipPeriod.end_date, MembershipPeriod.period_id)
    )
    return list(session.scalars(stmt))


def periods_for_member(
    session: Session,
    member_id: int,
) -> list[tuple[MembershipPeriod, Optional[str]]]:
    """Packages of a member, most recent start first, each with its type name (or None)."""
    stmt = (
        select(MembershipPeriod, MembershipType.name)
        .join(
            MembershipType,
            MembershipType.type_id == MembershipPeriod.type_id,
            isouter=True,
        )
        .where(MembershipPeriod.member_id == member_id)
        .order_by(MembershipPeriod.start_date.desc(), MembershipPeriod.period_id.desc())
    )
    return [(period, name) for period, name in session.execute(stmt).all()]


def payments_between(session: Session, start: datetime, end: datetime) -> list[Payment]:
    stmt = (
        select(Payment)
        .where(Payment.payment_date >= start, Payment.payment_date <= end)
        .order_by(Payment.payment_date, Payment.payment_id)
    )
    return list(session.scalars(stmt))


def payments_for_member(session: Session, member_id: int) -> list[Payment]:
    stmt = (
        select(Payment)
        .where(Payment.member_id == member_id)
        .order_by(Payment.payment_date.desc(), Payment.payment_id.desc())
    )
    return list(session.scalars(stmt))


def visits_between(session: Session, start: datetime, end: datetime) -> list[Visit]:
    stmt = (
        select(Visit)
        .where(Visit.arrival_time >= start, Visit.arrival_time <= end)
        .order_by(Visit.arrival_time, Visit.visit_id)
    )
    return list(session.scalars(stmt))


def open_visits_since(session: Session, since: datetime) -> list[Visit]:
    stmt = select(Visit).where(
        Visit.arrival_time >= since,
        Visit.departure_time.is_(None),
    )
    return list(session.scalars(stmt))


def open_visit_for_member(session: Session, member_id: int) -> Optional[Visit]:
    stmt = (
        select(Visit)
        .where(Visit.member_id == member_id, Visit.departure_time.is_(None))
        .order_by(Visit.arrival_time.desc())
    )
    return session.scalars(stmt).first()


# ---------------------------
# Trainers / sessions / rosters
# ---------------------------

def trainer_for_member(session: Session, member_id: int) -> Optional[Trainer]:
    return session.scalars(select(Trainer).where(Trainer.member_id == member_id)).first()


def list_trainers(session: Session) -> list[Trainer]:
    stmt = (
        select(Trainer)
        .options(joinedload(Trainer.member))
        .join(Member, Member.member_id == Trainer.member_id)
        .order_by(Member.full_name)
    )
    return list(session.scalars(stmt))


def trainer_session_ids(session: Session, trainer_id: int) -> list[int]:
    stmt = select(TrainingSession.session_id).where(TrainingSession.trainer_id == trainer_id)
    return [sid for (sid,) in session.execute(stmt).all()]


def first_session_for_trainer(session: Session, trainer_id: int) -> Optional[TrainingSession]:
    stmt = (
        select(TrainingSession)
        .where(TrainingSession.trainer_id == trainer_id)
        .order_by(TrainingSession.start_time, TrainingSession.session_id)
    )
    return session.scalars(stmt).first()


def sessions_between(session: Session, start: datetime, end: datetime) -> list[TrainingSession]:
    """Sessions starting in [start, end), with trainer and trainer member loaded."""
    stmt = (
        select(TrainingSession)
        .options(joinedload(TrainingSession.trainer).joinedload(Trainer.member))
        .where(TrainingSession.start_time >= start, TrainingSession.start_time < end)
        .order_by(TrainingSession.start_time, TrainingSession.session_id)
    )
    return list(session.scalars(stmt))


def session_roster(session: Session, session_id: int) -> list[SessionRosterEntry]:
    stmt = (
        select(SessionRosterEntry)
        .options(joinedload(SessionRosterEntry.member))
        .where(SessionRosterEntry.session_id == session_id)
        .order_by(SessionRosterEntry.entry_id)
    )
    return list(session.scalars(stmt))


def roster_entry(session: Session, session_id: int, member_id: int) -> Optional[SessionRosterEntry]:
    stmt = select(SessionRosterEntry).where(
        SessionRosterEntry.session_id == session_id,
        SessionRosterEntry.member_id == member_id,
    )
    return session.scalars(stmt).first()


def roster_pairs(session: Session) -> list[tuple[int, int]]:
    """(trainer_id, member_id) for every roster entry, via the entry's session."""
    stmt = (
        select(TrainingSession.trainer_id, SessionRosterEntry.member_id)
        .select_from(SessionRosterEntry)
        .join(TrainingSession, TrainingSession.session_id == SessionRosterEntry.session_id)
        .order_by(SessionRosterEntry.entry_id)
    )
    return [(tid, mid) for tid, mid in session.execute(stmt).all()]


def trainer_roster_members(session: Session, trainer_id: int) -> list[Member]:
    """Distinct members enrolled in any of the trainer's sessions."""
    stmt = (
        select(Member)
        .join(SessionRosterEntry, SessionRosterEntry.member_id == Member.member_id)
        .join(TrainingSession, TrainingSession.session_id == SessionRosterEntry.session_id)
        .where(TrainingSession.trainer_id == trainer_id)
        .order_by(Member.full_name)
        .distinct()
    )
    return list(session.scalars(stmt))
