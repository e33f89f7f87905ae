"""Tests for paginated and id-batched row fetching."""

import pytest

from conftest import InMemoryRowSource
from scripts.analytics.row_fetcher import (
    FilterOp,
    OrderBy,
    RowFilter,
    fetch_all_rows,
    fetch_rows_by_ids,
    list_all_auth_users,
)
from scripts.lib.errors import BatchTooLargeError, DataFetchError


def _rows(n):
    return [{"id": i, "user_id": f"u{i % 7}", "kind": "even" if i % 2 == 0 else "odd"} for i in range(n)]


class TestFetchAllRows:
    @pytest.mark.parametrize("total", [0, 999, 1000, 1001, 2500])
    def test_returns_every_row_once(self, total):
        source = InMemoryRowSource(tables={"t": _rows(total)})
        rows = fetch_all_rows(source, "t", "*", page_size=1000)
        assert len(rows) == total
        assert len({r["id"] for r in rows}) == total

    def test_exact_multiple_costs_one_empty_read(self):
        source = InMemoryRowSource(tables={"t": _rows(1000)})
        fetch_all_rows(source, "t", "*", page_size=1000)
        assert [offset for _, offset, _ in source.page_calls] == [0, 1000]

    def test_empty_table_single_call(self):
        source = InMemoryRowSource(tables={"t": []})
        assert fetch_all_rows(source, "t", "*") == []
        assert len(source.page_calls) == 1

    def test_filters_and_order_applied(self):
        source = InMemoryRowSource(tables={"t": _rows(10)})
        rows = fetch_all_rows(
            source, "t", "*",
            filters=[RowFilter("kind", FilterOp.EQ, "even")],
            page_size=3,
            order_by=OrderBy("id", desc=True),
        )
        assert [r["id"] for r in rows] == [8, 6, 4, 2, 0]

    def test_rejects_non_positive_page_size(self):
        with pytest.raises(ValueError):
            fetch_all_rows(InMemoryRowSource(), "t", "*", page_size=0)

    def test_wraps_unexpected_errors(self):
        class Broken(InMemoryRowSource):
            def fetch_page(self, *args, **kwargs):
                raise RuntimeError("connection reset")

        with pytest.raises(DataFetchError) as exc:
            fetch_all_rows(Broken(), "chat_messages", "*")
        assert exc.value.source == "chat_messages"
        assert "connection reset" in exc.value.details["cause"]


class TestFetchRowsByIds:
    def test_whole_batch_when_nothing_fails(self):
        source = InMemoryRowSource(tables={"t": _rows(50)})
        result = fetch_rows_by_ids(source, "t", "*", "user_id", ["u1", "u2"])
        assert len(result.rows) == len([r for r in _rows(50) if r["user_id"] in ("u1", "u2")])
        assert result.failed_ids == ()
        assert len(source.page_calls) == 1

    def test_split_returns_each_row_exactly_once(self):
        ids = [f"u{i}" for i in range(7)]
        source = InMemoryRowSource(tables={"t": _rows(200)}, max_in_size=1)
        result = fetch_rows_by_ids(source, "t", "*", "user_id", ids, page_size=10)

        assert result.failed_ids == ()
        returned = sorted(r["id"] for r in result.rows)
        assert returned == list(range(200))

    def test_single_oversized_id_is_isolated(self):
        ids = ["u0", "u1", "u2", "u3"]
        source = InMemoryRowSource(tables={"t": _rows(28)}, oversized_ids={"u2"})
        result = fetch_rows_by_ids(source, "t", "*", "user_id", ids)

        assert result.failed_ids == ("u2",)
        assert {r["user_id"] for r in result.rows} == {"u0", "u1", "u3"}
        assert len(result.rows) == 12

    def test_outage_propagates_without_splitting(self):
        outage = DataFetchError("503 Service Unavailable", source="t")
        source = InMemoryRowSource(tables={"t": _rows(28)}, in_query_error=outage)

        with pytest.raises(DataFetchError) as exc:
            fetch_rows_by_ids(source, "t", "*", "user_id", ["u0", "u1", "u2", "u3"])
        assert exc.value is outage
        assert len(source.page_calls) == 1

    def test_outage_after_split_still_propagates(self):
        class FailsOnSmallBatches(InMemoryRowSource):
            def fetch_page(self, table, columns, filters, offset, limit, order_by=None):
                ids = [f.value for f in filters if f.op == FilterOp.IN][0]
                if len(ids) == 1:
                    self.page_calls.append((table, offset, limit))
                    raise DataFetchError("connection reset", source=table)
                return super().fetch_page(table, columns, filters, offset, limit, order_by)

        source = FailsOnSmallBatches(tables={"t": _rows(28)}, max_in_size=1)
        with pytest.raises(DataFetchError) as exc:
            fetch_rows_by_ids(source, "t", "*", "user_id", ["u0", "u1"])
        assert not isinstance(exc.value, BatchTooLargeError)

    def test_duplicate_and_null_ids_ignored(self):
        source = InMemoryRowSource(tables={"t": _rows(14)}, max_in_size=1)
        result = fetch_rows_by_ids(source, "t", "*", "user_id", ["u1", None, "u1"])
        assert sorted(r["id"] for r in result.rows) == [1, 8]

    def test_no_ids_no_calls(self):
        source = InMemoryRowSource(tables={"t": _rows(5)})
        result = fetch_rows_by_ids(source, "t", "*", "user_id", [])
        assert result.rows == () and result.failed_ids == ()
        assert source.page_calls == []


class TestListAuthUsers:
    def test_pages_are_one_based_until_short_page(self):
        users = [{"id": f"u{i}"} for i in range(5)]
        source = InMemoryRowSource(auth_users=users)
        listed = list_all_auth_users(source, per_page=2)
        assert [u["id"] for u in listed] == [u["id"] for u in users]
        assert source.auth_calls == [(1, 2), (2, 2), (3, 2)]
