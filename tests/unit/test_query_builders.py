"""
Unit tests for the N1QL filter and ordering builders.

Tests cover:
1. WHERE clause rendering
2. ORDER BY rendering
3. Query options sent to the cluster
"""

from datetime import datetime, timezone

import pytest

from couchbase.n1ql import QueryScanConsistency

from clients.couchbase import Keyspace, build_order_by, build_where
from clients.couchbase import keyspace as keyspace_module


# =============================================================================
# WHERE Tests
# =============================================================================


class TestBuildWhere:
    """Tests for build_where."""

    def test_empty(self):
        assert build_where(None) == ("1=1", {})
        assert build_where({}) == ("1=1", {})

    def test_equality_and_operators(self):
        clause, params = build_where({"status": "active", "bid_count__gt": 0})
        assert clause == "`status` = $p0 AND `bid_count` > $p1"
        assert params == {"p0": "active", "p1": 0}

    def test_in_takes_a_list(self):
        clause, params = build_where({"status__in": ("paid", "completed")})
        assert clause == "`status` IN $p0"
        assert params == {"p0": ["paid", "completed"]}

    def test_isnull(self):
        clause, params = build_where({"ended_at__isnull": True, "order_id__isnull": False})
        assert clause == "`ended_at` IS NULL AND `order_id` IS NOT NULL"
        assert params == {}

    def test_datetimes_compare_as_millis(self):
        when = datetime(2026, 1, 1, tzinfo=timezone.utc)
        clause, params = build_where({"ends_at__lte": when})
        assert clause == "STR_TO_MILLIS(`ends_at`) <= STR_TO_MILLIS($p0)"
        assert params == {"p0": when.isoformat()}

    def test_unknown_operator(self):
        with pytest.raises(ValueError, match="Unsupported filter operator"):
            build_where({"status__like": "act%"})


# =============================================================================
# ORDER BY Tests
# =============================================================================


class TestBuildOrderBy:
    """Tests for build_order_by."""

    def test_empty(self):
        assert build_order_by(None) == ""

    def test_directions_and_timestamps(self):
        assert (
            build_order_by(["-amount_cents", "placed_at"])
            == " ORDER BY `amount_cents` DESC, STR_TO_MILLIS(`placed_at`) ASC"
        )


# =============================================================================
# Query Options Tests
# =============================================================================


class _Rows:
    def __init__(self, rows):
        self._rows = iter(rows)

    def __aiter__(self):
        return self

    async def __anext__(self):
        try:
            return next(self._rows)
        except StopIteration:
            raise StopAsyncIteration


class _RecordingCluster:
    def __init__(self, rows):
        self.rows = rows
        self.calls = []

    def query(self, statement, options):
        self.calls.append((statement, options))
        return _Rows(self.rows)


class TestKeyspaceQuery:
    """Queries see documents written just before them."""

    @pytest.fixture
    def cluster(self, monkeypatch):
        cluster = _RecordingCluster([{"total": 2}])

        async def _get_cluster():
            return cluster

        monkeypatch.setattr(keyspace_module, "get_cluster", _get_cluster)
        return cluster

    async def test_count_uses_request_plus(self, cluster):
        keyspace = Keyspace("marketplace", "_default", "vendor_earnings")
        assert await keyspace.count({"order_id": "o-1", "status": "pending"}) == 2

        statement, options = cluster.calls[0]
        assert statement.startswith("SELECT COUNT(*) AS total FROM `marketplace`.`_default`.`vendor_earnings`")
        assert options["scan_consistency"] == QueryScanConsistency.REQUEST_PLUS
        assert options["named_parameters"] == {"p0": "o-1", "p1": "pending"}

    async def test_unfiltered_query_uses_request_plus(self, cluster):
        keyspace = Keyspace("marketplace", "_default", "payouts")
        await keyspace.count()

        _, options = cluster.calls[0]
        assert options["scan_consistency"] == QueryScanConsistency.REQUEST_PLUS
        assert "named_parameters" not in options
