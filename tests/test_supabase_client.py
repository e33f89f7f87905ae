"""Tests for the Supabase row source adapter, using a stub query builder."""

from types import SimpleNamespace

import pytest

from scripts.analytics.row_fetcher import FilterOp, RowFilter
from scripts.lib.errors import BatchTooLargeError, DataFetchError
from scripts.lib.supabase_client import SupabaseRowSource, is_size_failure


class StatusError(Exception):
    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


class StubQuery:
    def __init__(self, error=None, data=None):
        self.error = error
        self.data = data or []
        self.calls = []

    def table(self, name):
        self.calls.append(("table", name))
        return self

    def select(self, columns):
        return self

    def in_(self, column, values):
        self.calls.append(("in", column, tuple(values)))
        return self

    def eq(self, column, value):
        self.calls.append(("eq", column, value))
        return self

    def range(self, start, end):
        self.calls.append(("range", start, end))
        return self

    def execute(self):
        if self.error is not None:
            raise self.error

        return SimpleNamespace(data=self.data)


class TestIsSizeFailure:
    @pytest.mark.parametrize("error", [
        StatusError("JSON could not be generated", code=414),
        StatusError("request rejected", code="413"),
        RuntimeError("414 Request-URI Too Long"),
        RuntimeError("Request Entity Too Large"),
    ])
    def test_size_rejections(self, error):
        assert is_size_failure(error)

    @pytest.mark.parametrize("error", [
        StatusError("Service Unavailable", code=503),
        RuntimeError("connection reset by peer"),
        StatusError("permission denied for table", code="42501"),
    ])
    def test_other_failures(self, error):
        assert not is_size_failure(error)


class TestSupabaseRowSource:
    def test_page_range_and_filters(self):
        stub = StubQuery(data=[{"id": 1}])
        source = SupabaseRowSource(client=stub)
        rows = source.fetch_page("t", "*", [RowFilter("kind", FilterOp.EQ, "a")], 10, 5)
        assert rows == [{"id": 1}]
        assert ("eq", "kind", "a") in stub.calls
        assert ("range", 10, 14) in stub.calls

    def test_oversized_id_list(self):
        stub = StubQuery(error=StatusError("URI Too Long", code=414))
        source = SupabaseRowSource(client=stub)
        with pytest.raises(BatchTooLargeError):
            source.fetch_page("t", "*", [RowFilter("user_id", FilterOp.IN, ["u1", "u2"])], 0, 10)

    def test_outage_on_id_list_is_plain_fetch_error(self):
        stub = StubQuery(error=StatusError("Service Unavailable", code=503))
        source = SupabaseRowSource(client=stub)
        with pytest.raises(DataFetchError) as exc:
            source.fetch_page("t", "*", [RowFilter("user_id", FilterOp.IN, ["u1"])], 0, 10)
        assert not isinstance(exc.value, BatchTooLargeError)

    def test_size_error_without_id_list_is_not_splittable(self):
        stub = StubQuery(error=StatusError("URI Too Long", code=414))
        source = SupabaseRowSource(client=stub)
        with pytest.raises(DataFetchError) as exc:
            source.fetch_page("t", "*", [], 0, 10)
        assert not isinstance(exc.value, BatchTooLargeError)
