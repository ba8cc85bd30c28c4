# Shared ORM base + naming convention

from __future__ import annotations
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.schema import MetaData

# stable constraint/index names for Alembic
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


# every table model (Storefront, CanonicalProduct, StorefrontLink, CatalogSyncRun) inherits from this
class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)
