# request-scoped dependencies shared by the sync routes

from __future__ import annotations
from typing import Callable

from fastapi import Request
from sqlalchemy.orm import sessionmaker

from catalog_hub.db.session import SessionLocal
from catalog_hub.integrations.marketplace.adapter import CatalogAdapter
from catalog_hub.integrations.registry import build_adapter
from catalog_hub.orchestration.catalog_sync.job_registry import JobRegistry


def get_job_registry(request: Request) -> JobRegistry:
    """The app-owned registry (created in main.py); one per API process."""
    return request.app.state.sync_jobs


def get_session_factory() -> sessionmaker:
    """Factory for sessions opened by background jobs, outside the request."""
    return SessionLocal


def get_adapter_factory() -> Callable[..., CatalogAdapter]:
    return build_adapter
