from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Integer, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .member import Member, MembershipPeriod


class Payment(Base):
    __tablename__ = "payment"

    payment_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("member.member_id"), nullable=False)
    period_id: Mapped[int | None] = mapped_column(
        ForeignKey("membership_period.period_id"),
        nullable=True,
    )
    amount: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    payment_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    member: Mapped["Member"] = relationship("Member", back_populates="payments")
    period: Mapped[Optional["MembershipPeriod"]] = relationship("MembershipPeriod")

    def __repr__(self) -> str:
        return f"<Payment id={self.payment_id} member_id={self.member_id} amount={self.amount}>"
