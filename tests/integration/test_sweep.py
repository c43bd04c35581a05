"""
Integration tests for the periodic sweep and the scheduler wiring.
"""

from datetime import timedelta

import pytest

import jobs.sweep as sweep_module
from jobs.scheduler import init_scheduler, shutdown_scheduler
from jobs.sweep import run_sweep
from models.entities.couchbase.auctions import Auction, EndPolicy
from models.entities.couchbase.orders import Order
from models.entities.couchbase.vendors import Vendor
from models.operations.bids import bid_place

from factories import T0


class TestSweep:
    """Tests for run_sweep."""

    async def test_full_pass(self, seed):
        vendor = await seed.vendor()
        upcoming = await seed.auction(vendor, starts_at=T0 + timedelta(hours=1))
        sold = await seed.auction(vendor, duration=timedelta(hours=2))
        unsold = await seed.auction(
            vendor,
            duration=timedelta(hours=2),
            end_policy=EndPolicy(on_no_sale="UNLIST"),
        )
        await bid_place(sold.id, "alice", 1500, now=T0 + timedelta(minutes=30))

        result = await run_sweep(now=T0 + timedelta(hours=3))
        assert result.activated == 1
        assert result.resolved == 2
        assert result.orders_reconciled == 0

        assert (await Auction.get(upcoming.id)).data.status == "active"
        assert (await Auction.get(sold.id)).data.status == "ended_sold"
        assert (await Auction.get(unsold.id)).data.end_policy_result == "unlisted"

    async def test_second_pass_is_quiet(self, seed):
        vendor = await seed.vendor()
        await seed.auction(vendor, duration=timedelta(hours=1))

        first = await run_sweep(now=T0 + timedelta(hours=2))
        second = await run_sweep(now=T0 + timedelta(hours=2))
        assert first.resolved == 1
        # The NONE policy is stamped once by the first pass
        assert second.model_dump() == {
            "activated": 0,
            "resolved": 0,
            "end_policies_applied": 0,
            "orders_reconciled": 0,
        }

    async def test_reconciles_paid_orders(self, seed):
        vendor = await seed.vendor()
        auction = await seed.auction(vendor, duration=timedelta(hours=1))
        await bid_place(auction.id, "alice", 2000, now=T0 + timedelta(minutes=10))
        await run_sweep(now=T0 + timedelta(hours=2))

        order = await Order.get(f"auction:{auction.id}")
        order.data.status = "paid"
        await Order.update(order)

        result = await run_sweep(now=T0 + timedelta(hours=3))
        assert result.orders_reconciled == 1
        assert (await Vendor.get(vendor.id)).data.balance_pending_cents == 1840

    async def test_failing_step_does_not_stop_others(self, seed, monkeypatch):
        async def _broken(now=None):
            raise RuntimeError("query service unavailable")

        monkeypatch.setattr(sweep_module, "auction_activate_due", _broken)
        vendor = await seed.vendor()
        await seed.auction(vendor, duration=timedelta(hours=1))

        result = await run_sweep(now=T0 + timedelta(hours=2))
        assert result.activated == 0
        assert result.resolved == 1


class TestScheduler:
    """Tests for init_scheduler."""

    def test_disabled(self, monkeypatch):
        monkeypatch.setenv("SCHEDULER_ENABLED", "false")
        assert init_scheduler() is None

    async def test_enabled_registers_jobs(self, monkeypatch):
        monkeypatch.setenv("SCHEDULER_ENABLED", "true")
        monkeypatch.setenv("AUCTION_SWEEP_INTERVAL_SECONDS", "120")
        scheduler = init_scheduler()
        try:
            assert {job.id for job in scheduler.get_jobs()} == {"auction_sweep", "notification_dispatch"}
            sweep_job = scheduler.get_job("auction_sweep")
            assert sweep_job.trigger.interval.total_seconds() == 120
            assert sweep_job.max_instances == 1
        finally:
            shutdown_scheduler()
