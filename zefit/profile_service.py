from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zefit.auth_service import MIN_PASSWORD_LENGTH, change_password
from zefit.models.content import Profile, StaffUser
from zefit.storage import LocalObjectStore, safe_object_name

logger = logging.getLogger(__name__)

AVATAR_BUCKET = "avatars"


def get_or_create_profile(session: Session, user_id: int) -> Profile:
    """The staff user's profile, created empty on the first visit."""
    profile = session.get(Profile, user_id)
    if profile:
        return profile
    if not session.get(StaffUser, user_id):
        raise ValueError("User not found")

    profile = Profile(user_id=user_id, full_name="")
    session.add(profile)
    session.commit()
    session.refresh(profile)
    logger.info("Created profile for staff user %s", user_id)
    return profile


def update_profile(
    session: Session,
    user_id: int,
    *,
    full_name: str = "",
    phone: str = "",
    new_password: str = "",
    avatar: Optional[tuple[str, bytes, str]] = None,
    store: Optional[LocalObjectStore] = None,
) -> Profile:
    """
    Overwrite name and phone, optionally store a new avatar
    (``(filename, data, content_type)``) and change the password.
    A new password shorter than six characters is ignored.
    """
    profile = get_or_create_profile(session, user_id)

    avatar_url = None
    if avatar is not None and avatar[1]:
        if store is None:
            raise ValueError("No object store configured for avatar upload")
        filename, data, content_type = avatar
        path = f"{user_id}/{safe_object_name(filename)}"
        avatar_url = store.upload(AVATAR_BUCKET, path, data, content_type=content_type)

    profile.full_name = (full_name or "").strip()
    profile.phone = (phone or "").strip() or None
    if avatar_url:
        profile.avatar_url = avatar_url
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Updating profile %s failed", user_id)
        raise

    if new_password and len(new_password.strip()) >= MIN_PASSWORD_LENGTH:
        change_password(session, user_id, new_password)

    session.refresh(profile)
    return profile
