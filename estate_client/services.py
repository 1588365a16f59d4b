from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import requests

from estate_client.adapters import AdaptedQueries
from estate_client.cache import QueryClient
from estate_client.endpoints import PROPERTY
from estate_client.upload_queue import PropertyImageTransport, UploadQueue
from estate_client.utils.api import ApiClient

logger = logging.getLogger(__name__)


@dataclass
class EstateServices:
    api: ApiClient
    queries: QueryClient
    uploads: UploadQueue
    adapted: AdaptedQueries
    _unsubscribe: Callable[[], None]

    def close(self) -> None:
        self._unsubscribe()
        self.queries.close()


def build_services(
    base_url: str | None = None,
    *,
    session: requests.Session | None = None,
    max_concurrent: int | None = None,
    upload_timeout: float | None = None,
) -> EstateServices:
    """
    Wire one API client into the query cache and the upload queue.

    Finished uploads invalidate Property reads so listings pick up the new
    image URLs.
    """
    api = ApiClient(base_url, session=session)
    queries = QueryClient(api)
    uploads = UploadQueue(
        PropertyImageTransport(api),
        max_concurrent=max_concurrent,
        timeout=upload_timeout,
    )

    def on_uploaded(owner_id: str, urls: list[str]) -> None:
        logger.debug("Refreshing listings after %d upload(s) for %s", len(urls), owner_id)
        queries.invalidate_tags([PROPERTY, (PROPERTY, owner_id)])

    unsubscribe = uploads.subscribe_to_completion(on_uploaded)
    return EstateServices(
        api=api,
        queries=queries,
        uploads=uploads,
        adapted=AdaptedQueries(queries),
        _unsubscribe=unsubscribe,
    )
