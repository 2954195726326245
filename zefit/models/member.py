from datetime import date, datetime

from sqlalchemy import (
    Integer,
    String,
    Date,
    DateTime,
    Numeric,
    ForeignKey,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class Member(Base):
    __tablename__ = "member"

    member_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    card_code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Deletes are cascaded explicitly in member_service.delete_member, in a fixed order.
    periods: Mapped[list["MembershipPeriod"]] = relationship(
        back_populates="member",
        order_by="MembershipPeriod.start_date.desc()",
    )
    payments: Mapped[list["Payment"]] = relationship(
        "Payment",
        back_populates="member",
        order_by="Payment.payment_date.desc()",
    )
    visits: Mapped[list["Visit"]] = relationship(back_populates="member")

    def __repr__(self) -> str:
        return f"<Member id={self.member_id} code={self.card_code!r} name={self.full_name!r}>"


class MembershipType(Base):
    __tablename__ = "membership_type"

    type_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    default_duration_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    default_price: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)


class MembershipPeriod(Base):
    """A purchased package instance. Status transitions are never written back."""
    __tablename__ = "membership_period"

    period_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("member.member_id"), nullable=False)
    # No FK constraint: a type may be deleted later and is then reported as unknown.
    type_id: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    member: Mapped["Member"] = relationship(back_populates="periods")

    def __repr__(self) -> str:
        return (
            f"<MembershipPeriod id={self.period_id} member_id={self.member_id} "
            f"{self.start_date}..{self.end_date} status={self.status!r}>"
        )


class Visit(Base):
    __tablename__ = "visit"

    visit_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        ForeignKey("member.member_id"),
        nullable=False,
        index=True,
    )
    arrival_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    # NULL while the member is still on the premises
    departure_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    member: Mapped["Member"] = relationship(back_populates="visits")
