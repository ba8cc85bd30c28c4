# exports for scripts and ad-hoc table creation

from .session import engine, SessionLocal, get_db, dispose_engine
from catalog_hub.db.model import *  # registers all models on Base.metadata
from .base import Base


"""
    Development only, create tables on an empty database:
        python -c "from catalog_hub.db import create_all; create_all()"
    Production uses `alembic upgrade head`.
"""
def create_all() -> None:
    Base.metadata.create_all(bind=engine)
