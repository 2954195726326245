from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from zefit.models.content import StaffUser

MIN_PASSWORD_LENGTH = 6


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def create_staff_user(session: Session, *, email: str, password: str) -> StaffUser:
    email = _normalize_email(email)
    if not email:
        raise ValueError("Email is required")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must have at least {MIN_PASSWORD_LENGTH} characters")

    user = StaffUser(email=email, password_hash=generate_password_hash(password))
    session.add(user)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ValueError("Email already exists")
    session.refresh(user)
    return user


def authenticate(session: Session, email: str, password: str) -> Optional[StaffUser]:
    user = session.scalar(select(StaffUser).where(StaffUser.email == _normalize_email(email)))
    if user is None or not check_password_hash(user.password_hash, password or ""):
        return None
    return user


def change_password(session: Session, user_id: int, new_password: str) -> StaffUser:
    if len(new_password or "") < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must have at least {MIN_PASSWORD_LENGTH} characters")
    user = session.get(StaffUser, user_id)
    if not user:
        raise ValueError("User not found")
    user.password_hash = generate_password_hash(new_password)
    session.commit()
    return user
