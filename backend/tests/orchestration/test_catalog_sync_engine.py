from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import select

from catalog_hub.db.model.catalog import StorefrontLink
from catalog_hub.db.model.sync_run import CatalogSyncRun
from catalog_hub.integrations.marketplace.errors import StorefrontConfigError, SyncCancelled
from catalog_hub.orchestration.catalog_sync.catalog_sync_task import (
    precheck_start, push_prices, run_catalog_sync_job,
)
from catalog_hub.orchestration.catalog_sync.engine import CatalogSyncEngine, log_health, validate_storefronts
from catalog_hub.orchestration.catalog_sync.job_registry import (
    COMPLETED, ERROR, IDLE, JobAlreadyRunning, JobRegistry, ProgressObserver, SyncResult,
)
from catalog_hub.repository import catalog_repo, storefront_repo, sync_run_repo

from fakes import FakeAdapter, attrs, factory_for, offer, price, stock


class Recorder(ProgressObserver):
    def __init__(self, stop_after=None):
        self.events = []
        self.stop_after = stop_after

    def on_progress(self, event):
        self.events.append(event)

    def should_stop(self):
        return self.stop_after is not None and len(self.events) >= self.stop_after


def _shop_a():
    return FakeAdapter(
        "sf-a",
        listing=[offer("A1", vendor_code="VC-1"), offer("A2", vendor_code="VC-2"), offer("A3")],
        attributes=[attrs("A1", name="Widget"), attrs("A2", name="Gadget")],
        prices=[price("A1", "10"), price("A2", "20"), price("A3", "30")],
        stock=[stock("A1", 2), stock("A1", 3)],
    )


def _shop_b():
    return FakeAdapter(
        "sf-b",
        listing=[offer("B1", vendor_code="VC-1"), offer("B2", vendor_code="VC-9")],
        attributes=[attrs("B1", name="Widget (B)")],
        prices=[price("B1", "11")],
    )


def _engine(db, adapters, sleeps, observer=None, write_batch_size=2):
    return CatalogSyncEngine(
        db, observer=observer, adapter_factory=factory_for(adapters), sleep=sleeps.append,
        write_batch_size=write_batch_size,
    )


# ========= engine =========
def test_full_run_over_two_storefronts(db_session, add_storefront, sleeps):
    add_storefront("sf-a")
    add_storefront("sf-b", marketplace="market")
    adapters = {"sf-a": _shop_a(), "sf-b": _shop_b()}
    rec = Recorder()

    result = _engine(db_session, adapters, sleeps, observer=rec).run()

    assert result.total == 5
    assert result.synced == 5
    assert result.errors == 0
    assert result.total == result.synced + result.errors
    assert result.storefronts_processed == 2
    assert all(a.closed for a in adapters.values())

    # VC-1 is one product listed on both storefronts
    assert catalog_repo.count_products(db_session) == 4
    links = db_session.scalars(select(StorefrontLink).where(StorefrontLink.offer_id == "A1")).all()
    assert links[0].stock_available == 5
    assert links[0].price == Decimal("10.00")
    assert catalog_repo.load_product(db_session, "VC-1").name in ("Widget", "Widget (B)")
    assert storefront_repo.get(db_session, "sf-a").last_sync_at is not None

    labels = [e.stage_label for e in rec.events]
    assert "listing" in labels and "merging" in labels and "writing" in labels


def test_facet_batch_failure_degrades_but_still_writes(db_session, add_storefront, sleeps):
    add_storefront("sf-a")
    shop = _shop_a()
    shop.fail_on["prices"] = lambda batch: "A3" in batch

    result = _engine(db_session, {"sf-a": shop}, sleeps).run()

    assert result.failed_batches == 1
    assert result.synced == 3
    assert result.total == result.synced + result.errors
    links = {lk.offer_id: lk for lk in db_session.scalars(select(StorefrontLink))}
    assert links["A3"].price is None
    assert links["A1"].price == Decimal("10.00")


def test_storefront_failure_is_isolated(db_session, add_storefront, sleeps):
    add_storefront("sf-a")
    add_storefront("sf-b")
    broken = FakeAdapter("sf-b", listing_error=RuntimeError("listing endpoint down"))

    result = _engine(db_session, {"sf-a": _shop_a(), "sf-b": broken}, sleeps).run()

    assert result.storefronts_processed == 1
    assert result.failed_storefronts == [{"storefront": "sf-b", "error": "listing endpoint down"}]
    assert result.synced == 3
    assert result.total == result.synced + result.errors
    assert broken.closed


def test_skipped_and_failed_rows_count_as_errors(db_session, add_storefront, sleeps, monkeypatch):
    add_storefront("sf-a")

    def partial_write(db, items, *, synced_at=None):
        # first item of each write batch is written, the rest lack a vendor code
        return {"requested": len(items), "synced": 1, "skipped_no_code": len(items) - 1, "errors": 0, "error_sample": []}

    monkeypatch.setattr(catalog_repo, "write_catalog_batch", partial_write)
    result = _engine(db_session, {"sf-a": _shop_a()}, sleeps).run()

    assert result.total == 3
    assert result.synced == 2
    assert result.skipped_no_code == 1
    assert result.errors == 1
    assert result.total == result.synced + result.errors


def test_offers_sharing_a_vendor_code_across_write_batches_count_as_errors(db_session, add_storefront, sleeps):
    add_storefront("sf-a")
    shop = FakeAdapter("sf-a", listing=[
        offer("A1", vendor_code="VC-1"), offer("A2", vendor_code="VC-2"), offer("A3", vendor_code="VC-1"),
    ])

    result = _engine(db_session, {"sf-a": shop}, sleeps, write_batch_size=2).run()

    assert result.total == 3
    assert result.synced == 2
    assert result.errors == 1
    offers = sorted(lk.offer_id for lk in db_session.scalars(select(StorefrontLink)))
    assert offers == ["A2", "A3"]


def test_max_offers_caps_listing(db_session, add_storefront, sleeps):
    add_storefront("sf-a")
    result = _engine(db_session, {"sf-a": _shop_a()}, sleeps).run(max_offers=2)
    assert result.total == 2
    assert catalog_repo.count_products(db_session) == 2


def test_duplicate_listing_entries_written_once(db_session, add_storefront, sleeps):
    add_storefront("sf-a")
    shop = FakeAdapter("sf-a", listing=[offer("A1", vendor_code="VC-1"), offer("A1", vendor_code="VC-1"), offer("A2")])
    result = _engine(db_session, {"sf-a": shop}, sleeps).run()
    assert result.total == 2
    assert result.synced == 2


def test_facet_calls_are_batched(db_session, add_storefront, sleeps):
    add_storefront("sf-a")
    shop = FakeAdapter("sf-a", listing=[offer(f"A{i}") for i in range(5)])
    _engine(db_session, {"sf-a": shop}, sleeps).run()
    # batch size 2 -> ceil(5 / 2) calls per facet
    assert sorted(len(b) for b in shop.calls["stock"]) == [1, 2, 2]


def test_cancel_propagates(db_session, add_storefront, sleeps):
    add_storefront("sf-a")
    with pytest.raises(SyncCancelled):
        _engine(db_session, {"sf-a": _shop_a()}, sleeps, observer=Recorder(stop_after=1)).run()


def test_no_enabled_storefronts(db_session, sleeps):
    with pytest.raises(StorefrontConfigError):
        _engine(db_session, {}, sleeps).run()


# ========= trigger-time validation =========
def test_validate_storefronts(db_session, add_storefront):
    with pytest.raises(StorefrontConfigError, match="no enabled"):
        validate_storefronts(db_session, adapter_factory=factory_for({}))

    add_storefront("sf-a")
    add_storefront("sf-off", enabled=False)
    fakes = {"sf-a": FakeAdapter("sf-a")}
    assert validate_storefronts(db_session, adapter_factory=factory_for(fakes)) == ["sf-a"]
    assert fakes["sf-a"].closed

    with pytest.raises(StorefrontConfigError, match="sf-off"):
        validate_storefronts(db_session, ["sf-a", "sf-off"], adapter_factory=factory_for(fakes))


def test_validate_storefronts_uses_real_credentials_check(db_session, add_storefront):
    add_storefront("sf-a", client_id=None)
    with pytest.raises(StorefrontConfigError, match="client_id"):
        validate_storefronts(db_session)


def test_precheck_rejects_when_run_row_active(db_session, add_storefront):
    add_storefront("sf-a")
    sync_run_repo.create_run(db_session, trigger="beat")
    with pytest.raises(JobAlreadyRunning):
        precheck_start(db_session, adapter_factory=factory_for({"sf-a": FakeAdapter("sf-a")}))


# ========= job runner =========
def test_job_completes_and_records_run(session_factory, db_session, add_storefront, sleeps):
    add_storefront("sf-a")
    registry = JobRegistry(ttl_sec=300)
    job_id = registry.start()

    out = run_catalog_sync_job(
        job_id, registry=registry, session_factory=session_factory,
        adapter_factory=factory_for({"sf-a": _shop_a()}), sleep=sleeps.append,
    )

    assert out["status"] == sync_run_repo.RUN_COMPLETED
    snap = registry.snapshot()
    assert snap.stage == COMPLETED
    assert snap.result["synced"] == 3
    db_session.expire_all()
    run = db_session.scalars(select(CatalogSyncRun)).one()
    assert run.status == "completed"
    assert run.synced == 3


def test_job_with_one_failed_storefront_is_degraded_not_failed(session_factory, add_storefront, sleeps):
    add_storefront("sf-a")
    add_storefront("sf-b")
    registry = JobRegistry()
    job_id = registry.start()
    adapters = {"sf-a": _shop_a(), "sf-b": FakeAdapter("sf-b", listing_error=RuntimeError("down"))}

    out = run_catalog_sync_job(
        job_id, registry=registry, session_factory=session_factory,
        adapter_factory=factory_for(adapters), sleep=sleeps.append,
    )
    assert out["status"] == sync_run_repo.RUN_COMPLETED_WITH_ERRORS
    snap = registry.snapshot()
    assert snap.stage == COMPLETED
    assert snap.result["failed_storefronts"] == [{"storefront": "sf-b", "error": "down"}]
    assert snap.result["total"] == snap.result["synced"] + snap.result["errors"]


def test_job_where_every_storefront_failed_ends_in_error(session_factory, add_storefront, sleeps):
    add_storefront("sf-b")
    registry = JobRegistry()
    job_id = registry.start()

    out = run_catalog_sync_job(
        job_id, registry=registry, session_factory=session_factory,
        adapter_factory=factory_for({"sf-b": FakeAdapter("sf-b", listing_error=RuntimeError("down"))}),
        sleep=sleeps.append,
    )
    assert out["status"] == sync_run_repo.RUN_ERROR
    snap = registry.snapshot()
    assert snap.stage == ERROR
    assert "sf-b: down" in snap.error


def test_run_history_failure_does_not_leave_job_running(session_factory, add_storefront, sleeps, monkeypatch):
    add_storefront("sf-a")
    registry = JobRegistry()
    job_id = registry.start()

    def broken_create_run(db, trigger):
        raise RuntimeError("db down")

    monkeypatch.setattr(sync_run_repo, "create_run", broken_create_run)
    out = run_catalog_sync_job(
        job_id, registry=registry, session_factory=session_factory,
        adapter_factory=factory_for({"sf-a": _shop_a()}), sleep=sleeps.append,
    )

    assert out["status"] == sync_run_repo.RUN_ERROR
    assert out["run_id"] is None
    snap = registry.snapshot()
    assert snap.stage == ERROR
    assert "db down" in snap.error
    # the slot is free again
    assert registry.start() != job_id


def test_finish_run_failure_does_not_leave_job_running(session_factory, add_storefront, sleeps, monkeypatch):
    add_storefront("sf-a")
    registry = JobRegistry()
    job_id = registry.start()

    def broken_finish_run(db, run_id, **kw):
        raise RuntimeError("lost connection")

    monkeypatch.setattr(sync_run_repo, "finish_run", broken_finish_run)
    out = run_catalog_sync_job(
        job_id, registry=registry, session_factory=session_factory,
        adapter_factory=factory_for({"sf-a": _shop_a()}), sleep=sleeps.append,
    )

    assert out["status"] == sync_run_repo.RUN_ERROR
    assert registry.snapshot().stage == ERROR


def test_cancelled_job_returns_registry_to_idle(session_factory, db_session, add_storefront, sleeps):
    add_storefront("sf-a")
    registry = JobRegistry()
    job_id = registry.start()
    registry.request_cancel()

    out = run_catalog_sync_job(
        job_id, registry=registry, session_factory=session_factory,
        adapter_factory=factory_for({"sf-a": _shop_a()}), sleep=sleeps.append,
    )
    assert out["status"] == sync_run_repo.RUN_CANCELLED
    assert registry.snapshot().stage == IDLE
    db_session.expire_all()
    assert db_session.scalars(select(CatalogSyncRun)).one().status == "cancelled"


# ========= health =========
def test_health_alert_thresholds():
    assert not log_health(SyncResult(total=100, synced=99, errors=1))
    assert log_health(SyncResult(total=100, synced=90, errors=10))
    assert log_health(SyncResult(total=10, synced=10, failed_batches=1))
    assert log_health(SyncResult(failed_storefronts=[{"storefront": "x", "error": "y"}]))


# ========= price write-back =========
def test_push_prices_batches_by_ceiling(session_factory, add_storefront, sleeps):
    add_storefront("sf-a")
    shop = FakeAdapter("sf-a")
    shop.price_update_batch_size = 2
    offers = [{"offer_id": f"A{i}", "price": "9.99"} for i in range(5)]

    out = push_prices("sf-a", offers, session_factory=session_factory,
                      adapter_factory=factory_for({"sf-a": shop}), sleep=sleeps.append)

    assert out["success"] is True
    assert out["batches"] == 3
    assert out["updated"] == 5
    assert sorted(len(c) for c in shop.price_calls) == [1, 2, 2]
    assert shop.price_calls[0][0].price == Decimal("9.99")
    assert shop.closed


def test_push_prices_reports_failed_batch(session_factory, add_storefront, sleeps):
    add_storefront("sf-a")
    shop = FakeAdapter("sf-a", fail_on={"update_prices": lambda batch: any(u.offer_id == "A3" for u in batch)})
    shop.price_update_batch_size = 2
    offers = [{"offer_id": f"A{i}", "price": 5} for i in range(4)]

    out = push_prices("sf-a", offers, session_factory=session_factory,
                      adapter_factory=factory_for({"sf-a": shop}), sleep=sleeps.append)

    assert out["success"] is False
    assert out["failed_batches"] == 1
    assert out["updated"] == 2
    assert out["errors"][0]["offer_ids"] == ["A2", "A3"]


def test_push_prices_unknown_storefront(session_factory):
    with pytest.raises(StorefrontConfigError):
        push_prices("nope", [{"offer_id": "A1", "price": "1"}], session_factory=session_factory)


def test_push_prices_rejects_offer_without_price(session_factory, add_storefront):
    add_storefront("sf-a")
    with pytest.raises(ValueError):
        push_prices("sf-a", [{"offer_id": "A1"}], session_factory=session_factory,
                    adapter_factory=factory_for({"sf-a": FakeAdapter("sf-a")}))


def test_explicit_zero_write_batch_size_is_rejected(db_session):
    with pytest.raises(ValueError):
        CatalogSyncEngine(db_session, write_batch_size=0)
