from sqlalchemy.engine import Engine

from app.db.base import Base
# Relationship targets are resolved by name, so every mapped module must be imported here.
from app.models import user, role, student, achievement, notification, audit  # noqa: F401


def create_tables(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


def drop_tables(engine: Engine) -> None:
    Base.metadata.drop_all(bind=engine)
