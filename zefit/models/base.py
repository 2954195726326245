from sqlalchemy import MetaData, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from zefit.settings import DATABASE_URL

if not DATABASE_URL:
    raise RuntimeError(
        "DATABASE_URL is not set. "
        "Set it in your environment or .env file (see .env.example)."
    )

# Stable constraint names so schema diffs stay readable on PostgreSQL
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

_engine_options = {"echo": False, "future": True}
if not DATABASE_URL.startswith("sqlite"):
    _engine_options["pool_pre_ping"] = True

engine = create_engine(DATABASE_URL, **_engine_options)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


def get_session() -> Session:
    """New session on the app engine; use as ``with get_session() as db:``."""
    return SessionLocal()
