from __future__ import annotations

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Iterable

from zefit.models.member import Member, MembershipPeriod, MembershipType, Visit
from zefit.models.payment import Payment
from zefit.models.scheduling import SessionRosterEntry, Trainer, TrainingSession


def add_membership_type(session, name: str = "Monthly", *, price="40.00", days: int = 30) -> MembershipType:
    membership_type = MembershipType(name=name, default_duration_days=days, default_price=Decimal(price))
    session.add(membership_type)
    session.commit()
    session.refresh(membership_type)
    return membership_type


def add_member(
    session,
    full_name: str,
    *,
    card_code: str | None = None,
    phone: str | None = None,
    status: str = "active",
    created_at: datetime | None = None,
) -> Member:
    count = session.query(Member).count()
    member = Member(
        card_code=card_code or f"ZF{count + 1:06d}",
        full_name=full_name,
        phone=phone,
        status=status,
        created_at=created_at or datetime(2025, 11, 1, 10, 0),
    )
    session.add(member)
    session.commit()
    session.refresh(member)
    return member


def add_period(
    session,
    member: Member,
    membership_type: MembershipType,
    *,
    start: date,
    end: date | None,
    price="40.00",
    status: str = "active",
) -> MembershipPeriod:
    period = MembershipPeriod(
        member_id=member.member_id,
        type_id=membership_type.type_id,
        price=Decimal(price),
        start_date=start,
        end_date=end,
        status=status,
    )
    session.add(period)
    session.commit()
    session.refresh(period)
    return period


def add_payment_row(session, member: Member, amount, paid_at: datetime, period=None) -> Payment:
    payment = Payment(
        member_id=member.member_id,
        period_id=period.period_id if period else None,
        amount=Decimal(str(amount)),
        payment_date=paid_at,
    )
    session.add(payment)
    session.commit()
    session.refresh(payment)
    return payment


def add_visits(session, member: Member, arrivals: Iterable[datetime], *, stay_minutes: int | None = 60) -> list[Visit]:
    visits = [
        Visit(
            member_id=member.member_id,
            arrival_time=arrival,
            departure_time=arrival + timedelta(minutes=stay_minutes) if stay_minutes else None,
        )
        for arrival in arrivals
    ]
    session.add_all(visits)
    session.commit()
    return visits


def add_trainer(session, member: Member) -> Trainer:
    trainer = Trainer(member_id=member.member_id)
    session.add(trainer)
    session.commit()
    session.refresh(trainer)
    return trainer


def add_training(
    session,
    trainer: Trainer,
    start: datetime,
    *,
    title: str = "Strength basics",
    minutes: int | None = 60,
    roster: Iterable[Member] = (),
) -> TrainingSession:
    training = TrainingSession(
        trainer_id=trainer.trainer_id,
        title=title,
        start_time=start,
        end_time=start + timedelta(minutes=minutes) if minutes else None,
    )
    session.add(training)
    session.flush()
    for member in roster:
        session.add(SessionRosterEntry(session_id=training.session_id, member_id=member.member_id))
    session.commit()
    session.refresh(training)
    return training


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute))
