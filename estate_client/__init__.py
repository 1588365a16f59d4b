"""
Client library for the real-estate marketplace backend.

Importing `estate_client` does not touch the network or the session store;
build the client objects with `estate_client.services.build_services`.
"""

from __future__ import annotations

import logging

from estate_client.adapters import AdaptedQueries, adapt_paginated
from estate_client.cache import MutationResult, QueryClient, QueryError, QueryResult, QuerySubscription
from estate_client.services import EstateServices, build_services
from estate_client.upload_queue import UploadFile, UploadItem, UploadQueue, UploadStatus
from estate_client.utils.api import ApiClient, ApiError

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "AdaptedQueries",
    "ApiClient",
    "ApiError",
    "EstateServices",
    "MutationResult",
    "QueryClient",
    "QueryError",
    "QueryResult",
    "QuerySubscription",
    "UploadFile",
    "UploadItem",
    "UploadQueue",
    "UploadStatus",
    "adapt_paginated",
    "build_services",
]
