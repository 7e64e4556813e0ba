"""
Paginated fetcher: read a complete collection from a paged list endpoint.

Jamf Pro list endpoints take `page` (0-indexed) and `page-size` and answer
with {"totalCount": N, "results": [...]}. Pages are requested until one
comes back with fewer than `page-size` items.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .jamf_client import JamfClient

__all__ = ["fetch_all", "extract_items"]


def extract_items(payload: Any, items_key: str = "results") -> List[Dict[str, Any]]:
    """
    Accept either:
      - {"results": [...]}
      - [...]
    Return a list of dicts (empty list if structure unknown).
    """
    if isinstance(payload, list):
        return [i for i in payload if isinstance(i, dict)]
    if isinstance(payload, dict):
        items = payload.get(items_key)
        if isinstance(items, list):
            return [i for i in items if isinstance(i, dict)]
    return []


def fetch_all(
    client: JamfClient,
    endpoint: str,
    page_size: int,
    *,
    params: Optional[Sequence[Tuple[str, Any]]] = None,
    items_key: str = "results",
    logger: Optional[logging.LoggerAdapter] = None,
) -> List[Dict[str, Any]]:
    """Return every item of *endpoint*, pages concatenated in request order.

    Any page failure propagates (TransportError) and
    nothing is returned: a failed fetch means "no data", never "partial data".
    """
    if int(page_size) <= 0:
        raise ValueError("page_size must be a positive integer")
    log = logger or logging.getLogger("plansync.fetch")

    items: List[Dict[str, Any]] = []
    page = 0
    while True:
        query: List[Tuple[str, Any]] = list(params or [])
        query += [("page", page), ("page-size", page_size)]
        payload = client.get_json(endpoint, params=query)
        batch = extract_items(payload, items_key)
        items.extend(batch)
        log.debug("Fetched %s page=%d count=%d", endpoint, page, len(batch))
        if len(batch) < page_size:
            break
        page += 1

    log.info("Fetched %d item(s) from %s in %d page(s)", len(items), endpoint, page + 1)
    return items
