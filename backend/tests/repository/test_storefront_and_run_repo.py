from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import update

from catalog_hub.db.model.sync_run import CatalogSyncRun
from catalog_hub.repository import storefront_repo, sync_run_repo
from catalog_hub.repository.storefront_repo import StorefrontUpsertDTO
from catalog_hub.utils.clock import now_utc


# ---------- storefronts ----------
def test_upsert_creates_then_updates_without_wiping_credentials(db_session):
    row = storefront_repo.upsert(db_session, "oz-main", StorefrontUpsertDTO(
        marketplace="ozon", name="Main", client_id="1", api_key="k",
    ))
    assert row.id is not None

    again = storefront_repo.upsert(db_session, "oz-main", StorefrontUpsertDTO(marketplace="ozon", enabled=False))
    assert again.id == row.id
    assert again.enabled is False
    assert again.client_id == "1"
    assert again.name == "Main"


def test_upsert_rejects_unknown_marketplace(db_session):
    with pytest.raises(ValueError):
        storefront_repo.upsert(db_session, "x", StorefrontUpsertDTO(marketplace="ebay"))


def test_list_enabled_filters_and_orders(db_session, add_storefront):
    add_storefront("b-shop")
    add_storefront("a-shop")
    add_storefront("off-shop", enabled=False)

    assert [s.code for s in storefront_repo.list_enabled(db_session)] == ["a-shop", "b-shop"]
    assert [s.code for s in storefront_repo.list_enabled(db_session, ["b-shop", " ", "off-shop"])] == ["b-shop"]


def test_mark_synced_sets_timestamp(db_session, add_storefront):
    add_storefront("a-shop")
    storefront_repo.mark_synced(db_session, "a-shop")
    db_session.expire_all()
    assert storefront_repo.get(db_session, "a-shop").last_sync_at is not None


# ---------- run history ----------
def test_run_lifecycle(db_session):
    run = sync_run_repo.create_run(db_session, trigger="api")
    assert sync_run_repo.find_active_run(db_session).id == run.id

    sync_run_repo.finish_run(
        db_session, run.id, status=sync_run_repo.RUN_COMPLETED_WITH_ERRORS,
        result={"total": 3, "synced": 2, "errors": 1, "failed_storefronts": [{"storefront": "b", "error": "x"}]},
    )
    db_session.expire_all()
    row = db_session.get(CatalogSyncRun, run.id)
    assert row.status == "completed_with_errors"
    assert (row.total, row.synced, row.errors) == (3, 2, 1)
    assert row.failed_storefronts == [{"storefront": "b", "error": "x"}]
    assert row.finished_at is not None
    assert sync_run_repo.find_active_run(db_session) is None


def test_stale_running_row_does_not_block(db_session):
    run = sync_run_repo.create_run(db_session, trigger="beat")
    db_session.execute(
        update(CatalogSyncRun).where(CatalogSyncRun.id == run.id).values(started_at=now_utc() - timedelta(hours=5))
    )
    db_session.commit()
    assert sync_run_repo.find_active_run(db_session, stale_minutes=60) is None


def test_runs_page_newest_first(db_session):
    ids = [sync_run_repo.create_run(db_session, trigger="api").id for _ in range(3)]
    for offset, run_id in enumerate(ids):
        db_session.execute(
            update(CatalogSyncRun).where(CatalogSyncRun.id == run_id)
            .values(started_at=now_utc() - timedelta(minutes=10 - offset))
        )
    db_session.commit()

    rows, total = sync_run_repo.fetch_runs_page(db_session, page=1, page_size=2)
    assert total == 3
    assert [r.id for r in rows] == [ids[2], ids[1]]
    rows, _ = sync_run_repo.fetch_runs_page(db_session, page=2, page_size=2)
    assert [r.id for r in rows] == [ids[0]]
