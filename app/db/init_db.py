# app/db/init_db.py
from app.db.base import Base, engine

# register every table on Base.metadata
from app.db.models import (  # noqa: F401
    appointment,
    availability,
    backjob,
    notification,
    penalty,
    rate_limit,
    rating,
    service,
    user,
)


def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)


def drop_db(bind=None):
    Base.metadata.drop_all(bind=bind or engine)
