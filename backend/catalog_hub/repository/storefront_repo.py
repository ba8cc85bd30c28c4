# storefront configuration repository

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from catalog_hub.db.model.storefront import Storefront
from catalog_hub.utils.clock import now_utc


MARKETPLACES = ("ozon", "market")


@dataclass(slots=True)
class StorefrontUpsertDTO:
    marketplace: str
    name: Optional[str] = None
    enabled: bool = True
    client_id: Optional[str] = None
    api_key: Optional[str] = None
    business_id: Optional[str] = None
    campaign_id: Optional[str] = None


# ---------- Query ----------
def get(db: Session, code: str) -> Optional[Storefront]:
    return db.scalars(select(Storefront).where(Storefront.code == code)).first()


def list_enabled(db: Session, codes: Optional[Iterable[str]] = None) -> List[Storefront]:
    """Enabled storefronts ordered by code; `codes` narrows the set."""
    stmt = select(Storefront).where(Storefront.enabled.is_(True)).order_by(Storefront.code.asc())
    wanted = [c.strip() for c in (codes or []) if c and c.strip()]
    if wanted:
        stmt = stmt.where(Storefront.code.in_(wanted))
    return list(db.scalars(stmt))


# ---------- Mutations ----------
def upsert(db: Session, code: str, dto: StorefrontUpsertDTO) -> Storefront:
    """Create or update by code; credentials left as None are not touched on update."""
    if dto.marketplace not in MARKETPLACES:
        raise ValueError(f"marketplace must be one of {MARKETPLACES}, got {dto.marketplace!r}")

    row = get(db, code)
    if row is None:
        row = Storefront(code=code, marketplace=dto.marketplace)
        db.add(row)
    row.marketplace = dto.marketplace
    row.enabled = dto.enabled
    if dto.name is not None:
        row.name = dto.name
    for field in ("client_id", "api_key", "business_id", "campaign_id"):
        value = getattr(dto, field)
        if value is not None:
            setattr(row, field, value)
    db.commit()
    db.refresh(row)
    return row


def mark_synced(db: Session, code: str, at: Optional[datetime] = None) -> None:
    db.execute(update(Storefront).where(Storefront.code == code).values(last_sync_at=at or now_utc()))
    db.commit()
