"""
services/pagination.py

Responsibility: Walks a page-numbered listing endpoint to completion and
accumulates every record.
Does NOT: filter, sort, deduplicate, or retry (the transport retries).
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from doapi.api_client import DigitalOceanClient
from doapi.types import ApiResponse, ListOptions

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PER_PAGE = 200

Lister = Callable[[ListOptions], Awaitable[tuple[list[T], ApiResponse]]]


async def list_all(lister: Lister, *, per_page: int = DEFAULT_PER_PAGE) -> list[T]:
    """
    Calls ``lister`` page by page starting at page 1.

    Stops when the response has no links or its links mark the last page;
    otherwise continues at links.current_page() + 1. The first error is
    propagated unchanged.

    Args:
        lister: Async callable fetching one page.
        per_page: Page size.

    Returns:
        All records in upstream order.
    """
    opts = ListOptions(page=1, per_page=per_page)
    records: list[T] = []
    while True:
        page, resp = await lister(opts)
        records.extend(page)
        logger.debug("Fetched page %d (%d records, %d total)", opts.page, len(page), len(records))
        if resp.links is None or resp.links.is_last_page():
            return records
        opts = ListOptions(page=resp.links.current_page() + 1, per_page=per_page)


async def list_path(
    api: DigitalOceanClient,
    path: str,
    key: str,
    *,
    params: dict[str, Any] | None = None,
    per_page: int = DEFAULT_PER_PAGE,
) -> list[dict[str, Any]]:
    """
    Convenience wrapper: list every record of a REST collection.

    Args:
        api: REST client.
        path: Collection path, e.g. "/v2/droplets".
        key: Response key holding the records, e.g. "droplets".
        params: Extra query parameters.
        per_page: Page size.
    """

    async def lister(opts: ListOptions) -> tuple[list[dict[str, Any]], ApiResponse]:
        return await api.list_page(path, key, opts, params=params)

    return await list_all(lister, per_page=per_page)
