"""
Integration tests for the earnings ledger.

Tests cover:
1. Commission recording when an order is paid
2. Idempotent and concurrent recording
3. Settlement on delivery
4. Multi-vendor orders
5. Reconciliation of orders whose ledger hooks did not run
"""

import asyncio
from datetime import timedelta

import pytest

from models.entities.couchbase.auctions import BookRef
from models.entities.couchbase.earnings import VendorEarning
from models.entities.couchbase.notifications import Notification
from models.entities.couchbase.orders import Order, OrderLineItem
from models.entities.couchbase.vendors import Vendor
from models.errors import InvalidState
from models.operations.auctions import auction_resolve
from models.operations.bids import bid_place
from models.operations.earnings import (
    earnings_list_by_vendor,
    earnings_reconcile_orders,
    earnings_record_sale_commission,
    earnings_settle_on_delivery,
    earnings_vendor_summary,
)
from models.operations.orders import order_cancel, order_create, order_update_status
from models.operations.vendors import vendor_set_commission_rate

from factories import T0

END = T0 + timedelta(hours=24)


async def _won_order(seed, amount_cents: int = 10000, commission_rate_bps: int = 800):
    vendor = await seed.vendor(commission_rate_bps=commission_rate_bps)
    auction = await seed.auction(vendor)
    await bid_place(auction.id, "buyer", amount_cents, now=T0 + timedelta(hours=1))
    resolved = await auction_resolve(auction.id, now=END)
    return vendor, await Order.get(resolved.data.order_id)


# =============================================================================
# Commission Tests
# =============================================================================


class TestRecordCommission:
    """Paying an order records one pending earning per line."""

    async def test_paid_auction_order(self, seed):
        vendor, order = await _won_order(seed)
        await order_update_status(order.id, "paid", now=END)

        earning = await VendorEarning.get(f"{order.id}:0")
        d = earning.data
        assert d.vendor_id == vendor.id
        assert d.auction_id == order.data.source_auction_id
        assert d.transaction_type == "auction_sale"
        assert d.amount_cents == 10000
        assert d.commission_rate_bps == 800
        assert d.platform_fee_cents == 800
        assert d.net_amount_cents == 9200
        assert d.status == "pending"

        v = (await Vendor.get(vendor.id)).data
        assert v.balance_pending_cents == 9200
        assert v.balance_available_cents == 0
        assert v.lifetime_gross_sales_cents == 10000
        assert v.lifetime_commission_cents == 800
        assert v.lifetime_earnings_cents == 9200
        assert v.total_sales == 1

        assert (await Order.get(order.id)).data.commission_recorded_at is not None

    async def test_vendor_notified_of_sale(self, seed):
        vendor, order = await _won_order(seed)
        await order_update_status(order.id, "paid", now=END)

        sales = await Notification.find({"kind": "sale_recorded"})
        assert len(sales) == 1
        assert sales[0].data.user_id == vendor.data.user_id
        assert "$92.00" in sales[0].data.message

    async def test_recording_twice_is_a_no_op(self, seed):
        vendor, order = await _won_order(seed)
        await order_update_status(order.id, "paid", now=END)

        assert await earnings_record_sale_commission(order.id, now=END) == []
        assert (await Vendor.get(vendor.id)).data.balance_pending_cents == 9200
        assert await VendorEarning.count() == 1

    async def test_concurrent_recording_counts_once(self, seed):
        vendor, order = await _won_order(seed)

        results = await asyncio.gather(
            earnings_record_sale_commission(order.id, now=END),
            earnings_record_sale_commission(order.id, now=END),
        )
        assert sorted(len(r) for r in results) == [0, 1]
        assert await VendorEarning.count() == 1
        v = (await Vendor.get(vendor.id)).data
        assert v.balance_pending_cents == 9200
        assert v.total_sales == 1

    async def test_rate_change_applies_to_later_sales_only(self, seed):
        vendor, order = await _won_order(seed)
        await order_update_status(order.id, "paid", now=END)
        await vendor_set_commission_rate(vendor.id, 1500)

        earning = await VendorEarning.get(f"{order.id}:0")
        assert earning.data.commission_rate_bps == 800
        assert earning.data.platform_fee_cents == 800

    async def test_fixed_price_multi_vendor_order(self, seed):
        first = await seed.vendor(commission_rate_bps=1000)
        second = await seed.vendor(commission_rate_bps=500)
        book_a = await seed.book(first)
        book_b = await seed.book(second)
        book_c = await seed.book(first)

        order = await order_create(
            "buyer",
            [
                OrderLineItem(item=BookRef(id=book_a.id), vendor_id=first.id, unit_price_cents=2000, subtotal_cents=2000),
                OrderLineItem(item=BookRef(id=book_b.id), vendor_id=second.id, unit_price_cents=3000, subtotal_cents=3000),
                OrderLineItem(item=BookRef(id=book_c.id), vendor_id=first.id, unit_price_cents=1000, subtotal_cents=1000),
            ],
        )
        assert order.data.total_cents == 6000
        await order_update_status(order.id, "paid", now=END)

        keys = sorted(e.id for e in await VendorEarning.find())
        assert keys == [f"{order.id}:0", f"{order.id}:1", f"{order.id}:2"]
        assert (await VendorEarning.get(f"{order.id}:0")).data.transaction_type == "book_sale"
        assert (await Vendor.get(first.id)).data.balance_pending_cents == 1800 + 900
        assert (await Vendor.get(second.id)).data.balance_pending_cents == 2850


# =============================================================================
# Settlement Tests
# =============================================================================


class TestSettlement:
    """Delivery moves net earnings from pending to available."""

    async def test_delivery_settles(self, seed):
        vendor, order = await _won_order(seed)
        await order_update_status(order.id, "paid", now=END)
        await order_update_status(order.id, "delivered", now=END + timedelta(days=3))

        earning = await VendorEarning.get(f"{order.id}:0")
        assert earning.data.status == "completed"
        assert earning.data.completed_at == END + timedelta(days=3)

        v = (await Vendor.get(vendor.id)).data
        assert v.balance_pending_cents == 0
        assert v.balance_available_cents == 9200
        stored = await Order.get(order.id)
        assert stored.data.delivered_at is not None
        assert stored.data.earnings_settled_at is not None

    async def test_settling_twice_is_a_no_op(self, seed):
        vendor, order = await _won_order(seed)
        await order_update_status(order.id, "paid", now=END)
        await order_update_status(order.id, "delivered", now=END)

        assert await earnings_settle_on_delivery(order.id, now=END) == []
        assert (await Vendor.get(vendor.id)).data.balance_available_cents == 9200

    async def test_settlement_does_not_rely_on_query_index(self, seed, monkeypatch):
        async def _lagging_index(cls, *args, **kwargs):
            return []

        monkeypatch.setattr(VendorEarning, "find", classmethod(_lagging_index))
        vendor, order = await _won_order(seed)
        await order_update_status(order.id, "paid", now=END)
        await order_update_status(order.id, "delivered", now=END)

        assert (await VendorEarning.get(f"{order.id}:0")).data.status == "completed"
        assert (await Vendor.get(vendor.id)).data.balance_available_cents == 9200
        assert (await Order.get(order.id)).data.earnings_settled_at is not None

    async def test_settling_before_commission_leaves_order_open(self, seed):
        vendor, order = await _won_order(seed)
        order.data.status = "delivered"
        order.data.delivered_at = END
        await Order.update(order)

        assert await earnings_settle_on_delivery(order.id, now=END) == []
        assert (await Order.get(order.id)).data.earnings_settled_at is None

        await earnings_reconcile_orders(now=END)
        stored = await Order.get(order.id)
        assert stored.data.earnings_settled_at is not None
        assert (await Vendor.get(vendor.id)).data.balance_available_cents == 9200

    async def test_summary_and_listing(self, seed):
        vendor, order = await _won_order(seed)
        await order_update_status(order.id, "paid", now=END)

        summary = await earnings_vendor_summary(vendor.id)
        assert summary["balance_pending_cents"] == 9200
        assert summary["pending_earnings"] == 1

        earnings, total = await earnings_list_by_vendor(vendor.id, status="pending")
        assert total == 1
        assert earnings[0].id == f"{order.id}:0"
        _, completed = await earnings_list_by_vendor(vendor.id, status="completed")
        assert completed == 0

    async def test_balances_stay_consistent(self, seed):
        vendor, order = await _won_order(seed, amount_cents=12345, commission_rate_bps=733)
        await order_update_status(order.id, "paid", now=END)
        await order_update_status(order.id, "delivered", now=END)

        earning = (await VendorEarning.get(f"{order.id}:0")).data
        assert earning.platform_fee_cents + earning.net_amount_cents == 12345
        v = (await Vendor.get(vendor.id)).data
        assert v.lifetime_earnings_cents == v.balance_pending_cents + v.balance_available_cents + v.balance_paid_cents


# =============================================================================
# Order Status Tests
# =============================================================================


class TestOrderStatus:
    """Order transitions around the ledger hooks."""

    async def test_cancel_pending_only(self, seed):
        _, order = await _won_order(seed)
        await order_update_status(order.id, "paid", now=END)
        with pytest.raises(InvalidState):
            await order_cancel(order.id)

    async def test_cancelled_order_is_closed(self, seed):
        _, order = await _won_order(seed)
        await order_cancel(order.id)
        with pytest.raises(InvalidState, match="no longer change"):
            await order_update_status(order.id, "paid", now=END)
        assert await VendorEarning.count() == 0


# =============================================================================
# Reconciliation Tests
# =============================================================================


class TestReconcile:
    """earnings_reconcile_orders repairs missed ledger hooks."""

    async def test_paid_order_without_commission(self, seed):
        vendor, order = await _won_order(seed)
        order.data.status = "paid"
        order.data.paid_at = END
        await Order.update(order)

        assert await earnings_reconcile_orders(now=END) == 1
        assert (await Vendor.get(vendor.id)).data.balance_pending_cents == 9200
        assert await earnings_reconcile_orders(now=END) == 0

    async def test_delivered_before_commission_settles_immediately(self, seed):
        vendor, order = await _won_order(seed)
        order.data.status = "delivered"
        order.data.paid_at = END
        order.data.delivered_at = END
        await Order.update(order)

        await earnings_reconcile_orders(now=END)
        v = (await Vendor.get(vendor.id)).data
        assert v.balance_pending_cents == 0
        assert v.balance_available_cents == 9200
        stored = await Order.get(order.id)
        assert stored.data.commission_recorded_at is not None
        assert stored.data.earnings_settled_at is not None

    async def test_pending_orders_are_ignored(self, seed):
        await _won_order(seed)
        assert await earnings_reconcile_orders(now=END) == 0
        assert await VendorEarning.count() == 0
