"""
Cloudinha Analytics — Row Fetcher
====================================

Reads complete result sets from the datastore despite its per-request
row cap. Every read in the engine goes through this module.

Functions:
  fetch_all_rows()      - Page through a table until a short page is returned
  fetch_rows_by_ids()   - Id-list query with recursive halving on oversized batches
  list_all_auth_users() - Page through the auth admin user listing
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from scripts.lib.errors import BatchTooLargeError, DataFetchError
from scripts.lib.logger import setup_logger
from scripts.lib.settings import PAGE_SIZE

logger = setup_logger("row_fetcher")


class FilterOp(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    IS_NOT_NULL = "is_not_null"


@dataclass(frozen=True)
class RowFilter:
    """A single column predicate applied to a table query."""
    column: str
    op: FilterOp
    value: Any = None


@dataclass(frozen=True)
class OrderBy:
    column: str
    desc: bool = False


class RowSource(Protocol):
    """Port to the datastore. One call returns at most `limit` rows."""

    def fetch_page(
        self,
        table: str,
        columns: str,
        filters: Sequence[RowFilter],
        offset: int,
        limit: int,
        order_by: Optional[OrderBy] = None,
    ) -> List[Dict[str, Any]]:
        ...

    def count_rows(self, table: str, filters: Sequence[RowFilter]) -> int:
        ...

    def list_auth_users(self, page: int, per_page: int) -> List[Dict[str, Any]]:
        ...


@dataclass(frozen=True)
class BatchResult:
    """Rows recovered by an id-list fetch plus the ids that could not be read."""
    rows: Tuple[Dict[str, Any], ...] = ()
    failed_ids: Tuple[Any, ...] = ()

    def merge(self, other: "BatchResult") -> "BatchResult":
        return BatchResult(
            rows=self.rows + other.rows,
            failed_ids=self.failed_ids + other.failed_ids,
        )


def fetch_all_rows(
    source: RowSource,
    table: str,
    columns: str,
    filters: Sequence[RowFilter] = (),
    page_size: int = PAGE_SIZE,
    order_by: Optional[OrderBy] = None,
) -> List[Dict[str, Any]]:
    """
    Fetch every row matching the filters, one page at a time.

    Stops as soon as a page comes back shorter than page_size, so a table
    holding an exact multiple of page_size costs one extra empty read.

    Raises:
        DataFetchError: If any page fails. Partial results are discarded.
    """
    if page_size < 1:
        raise ValueError("page_size must be positive")

    rows: List[Dict[str, Any]] = []
    offset = 0

    while True:
        try:
            page = source.fetch_page(table, columns, filters, offset, page_size, order_by)
        except DataFetchError:
            raise
        except Exception as e:
            raise DataFetchError(
                f"Failed to fetch {table} at offset {offset}", source=table, cause=e,
            ) from e

        page = page or []
        rows.extend(page)
        if len(page) < page_size:
            break
        offset += page_size

    logger.debug("Fetched %d rows from %s", len(rows), table)
    return rows


def fetch_rows_by_ids(
    source: RowSource,
    table: str,
    columns: str,
    id_column: str,
    ids: Sequence[Any],
    filters: Sequence[RowFilter] = (),
    page_size: int = PAGE_SIZE,
) -> BatchResult:
    """
    Fetch rows whose id_column is in ids.

    Long id lists can overflow the request URL. When the source rejects a
    batch as too large it is split in half and each half is retried on its
    own; a single id that is still rejected is returned in
    BatchResult.failed_ids instead of raising. Any other failure aborts the
    whole fetch.

    Args:
        source: Datastore port.
        table: Table name.
        columns: Column projection.
        id_column: Column matched against ids.
        ids: Ids to look up. Duplicates and None are ignored.
        filters: Extra filters applied to every batch.
        page_size: Rows per page.

    Returns:
        BatchResult with every recovered row exactly once.

    Raises:
        DataFetchError: On any failure other than an oversized batch.
    """
    unique_ids = tuple(dict.fromkeys(i for i in ids if i is not None))
    if not unique_ids:
        return BatchResult()

    result = _fetch_id_batch(
        source, table, columns, id_column, unique_ids, tuple(filters), page_size,
    )
    if result.failed_ids:
        logger.warning(
            "%s: %d of %d ids could not be fetched",
            table, len(result.failed_ids), len(unique_ids),
        )
    return result


def _fetch_id_batch(
    source: RowSource,
    table: str,
    columns: str,
    id_column: str,
    ids: Tuple[Any, ...],
    filters: Tuple[RowFilter, ...],
    page_size: int,
) -> BatchResult:
    batch_filters = filters + (RowFilter(id_column, FilterOp.IN, list(ids)),)
    try:
        rows = fetch_all_rows(source, table, columns, batch_filters, page_size)
        return BatchResult(rows=tuple(rows))
    except BatchTooLargeError as e:
        if len(ids) == 1:
            logger.warning("Dropping %s=%s from %s: %s", id_column, ids[0], table, e)
            return BatchResult(failed_ids=ids)

        mid = len(ids) // 2
        logger.info(
            "Batch of %d ids too large for %s, retrying as %d + %d",
            len(ids), table, mid, len(ids) - mid,
        )
        left = _fetch_id_batch(source, table, columns, id_column, ids[:mid], filters, page_size)
        right = _fetch_id_batch(source, table, columns, id_column, ids[mid:], filters, page_size)
        return left.merge(right)


def list_all_auth_users(source: RowSource, per_page: int = PAGE_SIZE) -> List[Dict[str, Any]]:
    """Page through the auth admin listing (pages are 1-based)."""
    users: List[Dict[str, Any]] = []
    page = 1

    while True:
        try:
            batch = source.list_auth_users(page, per_page)
        except DataFetchError:
            raise
        except Exception as e:
            raise DataFetchError(
                f"Failed to list auth users (page {page})", source="auth.users", cause=e,
            ) from e

        batch = batch or []
        users.extend(batch)
        if len(batch) < per_page:
            break
        page += 1

    logger.debug("Listed %d auth users", len(users))
    return users
