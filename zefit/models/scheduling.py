from datetime import datetime

from sqlalchemy import (
    Integer,
    String,
    DateTime,
    Text,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class Trainer(Base):
    """A member promoted to trainer; the member row is the trainer's identity."""
    __tablename__ = "trainer"

    trainer_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        ForeignKey("member.member_id"),
        nullable=False,
        unique=True,
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    member: Mapped["Member"] = relationship("Member")
    sessions: Mapped[list["TrainingSession"]] = relationship(
        back_populates="trainer",
        order_by="TrainingSession.start_time",
    )


class TrainingSession(Base):
    __tablename__ = "training_session"

    session_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trainer_id: Mapped[int] = mapped_column(ForeignKey("trainer.trainer_id"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    trainer: Mapped["Trainer"] = relationship(back_populates="sessions")
    roster: Mapped[list["SessionRosterEntry"]] = relationship(back_populates="training_session")

    def __repr__(self) -> str:
        return f"<TrainingSession id={self.session_id} title={self.title!r} start={self.start_time}>"


class SessionRosterEntry(Base):
    __tablename__ = "session_roster_entry"
    __table_args__ = (UniqueConstraint("session_id", "member_id", name="uq_roster_session_member"),)

    entry_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        ForeignKey("training_session.session_id"),
        nullable=False,
    )
    member_id: Mapped[int] = mapped_column(ForeignKey("member.member_id"), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="enrolled")

    training_session: Mapped["TrainingSession"] = relationship(back_populates="roster")
    member: Mapped["Member"] = relationship("Member")
