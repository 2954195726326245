from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zefit.models.content import Post
from zefit.storage import LocalObjectStore, safe_object_name

logger = logging.getLogger(__name__)

POST_BUCKET = "posts"

# (filename, data, content_type)
Upload = tuple[str, bytes, str]


def _store_image(store: Optional[LocalObjectStore], image: Optional[Upload]) -> Optional[str]:
    if image is None or not image[1]:
        return None
    if store is None:
        raise ValueError("No object store configured for image upload")
    filename, data, content_type = image
    return store.upload(POST_BUCKET, safe_object_name(filename), data, content_type=content_type)


def _require_text(title: Optional[str], content: Optional[str]) -> tuple[str, str]:
    title = (title or "").strip()
    content = (content or "").strip()
    if not title or not content:
        raise ValueError("Title and content are required")
    return title, content


def list_posts(session: Session) -> list[Post]:
    stmt = select(Post).order_by(Post.created_at.desc(), Post.post_id.desc())
    return list(session.scalars(stmt))


def create_post(
    session: Session,
    *,
    title: str,
    content: str,
    image: Optional[Upload] = None,
    store: Optional[LocalObjectStore] = None,
) -> Post:
    title, content = _require_text(title, content)
    image_url = _store_image(store, image)

    post = Post(title=title, content=content, image_url=image_url)
    session.add(post)
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Saving new post failed")
        raise
    session.refresh(post)
    return post


def update_post(
    session: Session,
    post_id: int,
    *,
    title: str,
    content: str,
    image: Optional[Upload] = None,
    store: Optional[LocalObjectStore] = None,
) -> Post:
    """Overwrite a post; without a new image the existing image URL is kept."""
    title, content = _require_text(title, content)
    post = session.get(Post, post_id)
    if not post:
        raise ValueError("Post not found")

    image_url = _store_image(store, image)
    post.title = title
    post.content = content
    if image_url:
        post.image_url = image_url
    post.updated_at = datetime.now()
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Updating post %s failed", post_id)
        raise
    session.refresh(post)
    return post


def delete_post(session: Session, post_id: int) -> None:
    post = session.get(Post, post_id)
    if not post:
        raise ValueError("Post not found")
    session.delete(post)
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Deleting post %s failed", post_id)
        raise
