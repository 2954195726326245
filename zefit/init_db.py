from zefit import models  # noqa: F401 (register models)
from zefit.models.base import Base, engine


def init_db() -> None:
    # Create all ORM tables; indexes are declared on the models
    Base.metadata.create_all(bind=engine)


def drop_db() -> None:
    Base.metadata.drop_all(bind=engine)


if __name__ == "__main__":
    init_db()
    print("Database tables + indexes created.")
