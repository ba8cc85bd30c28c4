from __future__ import annotations

from typing import Any, Iterable, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from catalog_hub.db.base import Base
import catalog_hub.db.model  # noqa: F401  registers every table
from catalog_hub.db.model.storefront import Storefront


# ---------- database ----------
@pytest.fixture
def session_factory() -> Iterable[sessionmaker]:
    """In-memory SQLite; StaticPool keeps one connection so every session of a test sees the same data."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
    yield factory
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(session_factory) -> Iterable[Session]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def add_storefront(db_session):
    def _add(code: str, marketplace: str = "ozon", **fields: Any) -> Storefront:
        values = {"client_id": "cid", "api_key": "key", "enabled": True}
        values.update(fields)
        sf = Storefront(code=code, marketplace=marketplace, **values)
        db_session.add(sf)
        db_session.commit()
        return sf
    return _add


@pytest.fixture
def sleeps() -> List[float]:
    """Collects requested delays; pass `sleeps.append` wherever a sleep callable is injected."""
    return []
