from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from zefit import repository
from zefit.calendar_window import week_days, week_range
from zefit.models.member import Member
from zefit.models.scheduling import SessionRosterEntry, Trainer, TrainingSession

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 60
ENROLLED = "enrolled"


# ---------------------------
# 1. Week view
# ---------------------------

def session_duration_minutes(training: TrainingSession) -> int:
    """Display duration; a missing or non-positive span shows as the 60 minute default."""
    if training.end_time is None:
        return DEFAULT_DURATION_MINUTES
    diff = round((training.end_time - training.start_time).total_seconds() / 60)
    return diff if diff > 0 else DEFAULT_DURATION_MINUTES


def bucket_sessions_by_day(
    sessions: Iterable[TrainingSession],
    week_start: datetime,
) -> list[dict]:
    """
    Group sessions into exactly seven Monday..Sunday buckets by start date.
    Sessions outside the week are ignored; an empty bucket has ``empty=True``.
    """
    days = week_days(week_start)
    buckets: dict[date, list[TrainingSession]] = {day: [] for day in days}
    for training in sessions:
        day = training.start_time.date()
        if day in buckets:
            buckets[day].append(training)
    return [
        {
            "date": day,
            "sessions": sorted(buckets[day], key=lambda s: (s.start_time, s.session_id)),
            "empty": not buckets[day],
        }
        for day in days
    ]


def get_week_schedule(
    session: Session,
    reference: Optional[date | datetime] = None,
) -> dict:
    if reference is None:
        reference = datetime.now()
    start, end = week_range(reference)
    sessions = repository.sessions_between(session, start, end)
    return {
        "week_start": start,
        "week_end": end,
        "days": bucket_sessions_by_day(sessions, start),
    }


# ---------------------------
# 2. Create / edit / delete
# ---------------------------

def save_training_session(
    session: Session,
    *,
    trainer_id: Optional[int],
    title: Optional[str],
    day: Optional[date],
    start_at: Optional[time],
    duration_minutes: Optional[int] = DEFAULT_DURATION_MINUTES,
    description: Optional[str] = None,
    session_id: Optional[int] = None,
    min_duration_minutes: Optional[int] = None,
) -> TrainingSession:
    """
    Create a new training session, or overwrite the one with ``session_id``.

    Start is ``day`` + ``start_at``; end is start + duration. The trainer may
    change on edit. Minimum duration is only enforced when the caller asks.
    """
    title = (title or "").strip()
    if not title or day is None or start_at is None or not trainer_id:
        raise ValueError("Title, date, time and trainer are required")

    duration = duration_minutes or DEFAULT_DURATION_MINUTES
    if duration <= 0:
        raise ValueError("Duration must be a positive number of minutes")
    if min_duration_minutes is not None and duration < min_duration_minutes:
        raise ValueError(f"Duration must be at least {min_duration_minutes} minutes")

    if not session.get(Trainer, trainer_id):
        raise ValueError("Trainer not found")

    start_time = datetime.combine(day, start_at)
    end_time = start_time + timedelta(minutes=duration)

    if session_id is None:
        training = TrainingSession(trainer_id=trainer_id)
        session.add(training)
    else:
        training = session.get(TrainingSession, session_id)
        if not training:
            raise ValueError("Training session not found")
        training.trainer_id = trainer_id

    training.title = title
    training.description = (description or "").strip() or None
    training.start_time = start_time
    training.end_time = end_time

    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Saving training session %s failed", session_id or "(new)")
        raise
    session.refresh(training)
    logger.info(
        "%s training session %s (%s at %s)",
        "Created" if session_id is None else "Updated",
        training.session_id,
        training.title,
        training.start_time,
    )
    return training


def create_recurring_sessions(
    session: Session,
    *,
    source_session_id: int,
    weeks: int,
) -> list[TrainingSession]:
    """
    Copy a session into each of the next ``weeks`` weeks, same weekday and time.
    The copies are plain independent sessions with no link back to the source.
    """
    if weeks < 1:
        raise ValueError("Number of weeks must be at least 1")

    source = session.get(TrainingSession, source_session_id)
    if not source:
        raise ValueError("Training session not found")

    copies = []
    for i in range(1, weeks + 1):
        shift = timedelta(days=7 * i)
        copies.append(
            TrainingSession(
                trainer_id=source.trainer_id,
                title=source.title,
                description=source.description,
                start_time=source.start_time + shift,
                end_time=source.end_time + shift if source.end_time else None,
            )
        )
    session.add_all(copies)
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Recurring generation from session %s failed", source_session_id)
        raise
    for training in copies:
        session.refresh(training)
    logger.info("Generated %d weekly copies of session %s", weeks, source_session_id)
    return copies


def delete_training_session(session: Session, session_id: int) -> None:
    """Remove a session together with its roster, in one transaction."""
    if not session.get(TrainingSession, session_id):
        raise ValueError("Training session not found")

    try:
        session.execute(
            delete(SessionRosterEntry).where(SessionRosterEntry.session_id == session_id)
        )
        session.execute(delete(TrainingSession).where(TrainingSession.session_id == session_id))
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Deleting training session %s failed, nothing was removed", session_id)
        raise
    logger.info("Deleted training session %s", session_id)


# ---------------------------
# 3. Session roster
# ---------------------------

def get_session_roster(session: Session, session_id: int) -> list[SessionRosterEntry]:
    if not session.get(TrainingSession, session_id):
        raise ValueError("Training session not found")
    return repository.session_roster(session, session_id)


def list_session_candidates(
    session: Session,
    session_id: int,
    *,
    name_query: str = "",
) -> list[Member]:
    """Active members not yet on this session's roster, optionally filtered by name."""
    enrolled = {entry.member_id for entry in repository.session_roster(session, session_id)}
    q = name_query.strip().lower()
    return [
        m
        for m in repository.list_active_members(session)
        if m.member_id not in enrolled and q in m.full_name.lower()
    ]


def add_member_to_session(
    session: Session,
    *,
    session_id: int,
    member_id: int,
    status: str = ENROLLED,
) -> SessionRosterEntry:
    if not session.get(TrainingSession, session_id):
        raise ValueError("Training session not found")
    if not session.get(Member, member_id):
        raise ValueError("Member not found")
    if repository.roster_entry(session, session_id, member_id):
        raise ValueError("Member is already enrolled in this session")

    entry = SessionRosterEntry(session_id=session_id, member_id=member_id, status=status)
    session.add(entry)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ValueError("Member is already enrolled in this session")
    session.refresh(entry)
    return entry


def remove_member_from_session(session: Session, *, session_id: int, member_id: int) -> None:
    entry = repository.roster_entry(session, session_id, member_id)
    if not entry:
        raise ValueError("Member is not enrolled in this session")
    session.delete(entry)
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception(
            "Removing member %s from session %s failed", member_id, session_id
        )
        raise
