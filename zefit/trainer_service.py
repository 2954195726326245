from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from zefit import repository
from zefit.models.member import Member
from zefit.models.scheduling import SessionRosterEntry, Trainer, TrainingSession
from zefit.schedule_service import add_member_to_session

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TITLE = "Individual plan"


# ---------------------------
# 1. Trainers
# ---------------------------

def promote_to_trainer(
    session: Session,
    *,
    member_id: int,
    note: Optional[str] = None,
) -> Trainer:
    member = session.get(Member, member_id)
    if not member:
        raise ValueError("Member not found")
    if repository.trainer_for_member(session, member_id):
        raise ValueError("Member is already a trainer")

    trainer = Trainer(member_id=member_id, note=note)
    session.add(trainer)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ValueError("Member is already a trainer")
    session.refresh(trainer)
    logger.info("Promoted member %s to trainer %s", member_id, trainer.trainer_id)
    return trainer


def count_distinct_members(pairs: Iterable[tuple[int, int]]) -> dict[int, int]:
    """(trainer_id, member_id) pairs -> number of distinct members per trainer."""
    members: dict[int, set[int]] = defaultdict(set)
    for trainer_id, member_id in pairs:
        members[trainer_id].add(member_id)
    return {trainer_id: len(ids) for trainer_id, ids in members.items()}


def list_trainers_with_counts(session: Session) -> list[dict]:
    """
    Every trainer with the number of distinct members across all their
    sessions. A member enrolled in two sessions of one trainer counts once.
    """
    counts = count_distinct_members(repository.roster_pairs(session))
    return [
        {
            "trainer": trainer,
            "name": trainer.member.full_name,
            "members_count": counts.get(trainer.trainer_id, 0),
        }
        for trainer in repository.list_trainers(session)
    ]


def list_promotion_candidates(session: Session) -> list[Member]:
    """Active members who are not trainers yet."""
    trainer_member_ids = set(session.scalars(select(Trainer.member_id)))
    return [
        m for m in repository.list_active_members(session)
        if m.member_id not in trainer_member_ids
    ]


# ---------------------------
# 2. Trainer roster
# ---------------------------

def get_trainer_members(session: Session, trainer_id: int) -> list[Member]:
    if not session.get(Trainer, trainer_id):
        raise ValueError("Trainer not found")
    return repository.trainer_roster_members(session, trainer_id)


def list_roster_candidates(session: Session, trainer_id: int) -> list[Member]:
    """Active members not yet in any of the trainer's sessions."""
    current = {m.member_id for m in get_trainer_members(session, trainer_id)}
    return [m for m in repository.list_active_members(session) if m.member_id not in current]


def ensure_default_session(
    session: Session,
    trainer_id: int,
    *,
    now: Optional[datetime] = None,
) -> TrainingSession:
    """
    Return the trainer's earliest session, creating an open-ended
    "Individual plan" session starting ``now`` when the trainer has none.
    """
    if not session.get(Trainer, trainer_id):
        raise ValueError("Trainer not found")

    existing = repository.first_session_for_trainer(session, trainer_id)
    if existing:
        return existing

    if now is None:
        now = datetime.now()
    training = TrainingSession(
        trainer_id=trainer_id,
        title=DEFAULT_SESSION_TITLE,
        start_time=now,
        end_time=None,
    )
    session.add(training)
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Creating default session for trainer %s failed", trainer_id)
        raise
    session.refresh(training)
    logger.info("Created default session %s for trainer %s", training.session_id, trainer_id)
    return training


def add_member_to_trainer(
    session: Session,
    *,
    trainer_id: int,
    member_id: int,
    now: Optional[datetime] = None,
) -> SessionRosterEntry:
    """Enroll a member with a trainer through the trainer's default session."""
    if not session.get(Member, member_id):
        raise ValueError("Member not found")
    training = ensure_default_session(session, trainer_id, now=now)
    return add_member_to_session(
        session,
        session_id=training.session_id,
        member_id=member_id,
    )


def remove_member_from_trainer(
    session: Session,
    *,
    trainer_id: int,
    member_id: int,
) -> int:
    """Drop the member from every session of this trainer. Returns entries removed."""
    if not session.get(Trainer, trainer_id):
        raise ValueError("Trainer not found")

    session_ids = repository.trainer_session_ids(session, trainer_id)
    if not session_ids:
        return 0

    try:
        result = session.execute(
            delete(SessionRosterEntry).where(
                SessionRosterEntry.member_id == member_id,
                SessionRosterEntry.session_id.in_(session_ids),
            )
        )
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Removing member %s from trainer %s failed", member_id, trainer_id)
        raise
    return result.rowcount or 0
