"""
View-model adapters for paginated backend responses.

Every adapter is pure and total: malformed or partial payloads degrade to
empty lists and first-page pagination instead of raising.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable

from estate_client.cache import QueryClient, QueryResult, QuerySubscription
from estate_client.utils.schemas import parse_envelope, parse_page

Adapter = Callable[[Any], dict[str, Any]]


def pagination(page: int, total_pages: int, total: int) -> dict[str, Any]:
    return {
        "currentPage": page,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
        "total": total,
    }


def adapt_paginated(payload: Any, plural: str) -> dict[str, Any]:
    page = parse_page(payload)
    return {
        plural: page.items(plural),
        "pagination": pagination(page.page, page.total_pages, page.total),
    }


def adapt_properties(payload: Any) -> dict[str, Any]:
    return adapt_paginated(payload, "properties")


def adapt_pending_properties(payload: Any) -> dict[str, Any]:
    return {"properties": parse_page(payload).items("properties")}


def adapt_users(payload: Any) -> dict[str, Any]:
    return adapt_paginated(payload, "users")


def adapt_feedbacks(payload: Any) -> dict[str, Any]:
    return adapt_paginated(payload, "feedbacks")


def adapt_activities(payload: Any) -> dict[str, Any]:
    return adapt_paginated(payload, "activities")


def adapt_favorites(payload: Any) -> dict[str, Any]:
    data = parse_envelope(payload).data
    return {"favorites": list(data) if isinstance(data, list) else []}


def _count(section: Any, name: str) -> int:
    if not isinstance(section, dict):
        return 0
    try:
        return int(section.get(name) or 0)
    except (TypeError, ValueError):
        return 0


def adapt_dashboard_stats(payload: Any) -> dict[str, Any]:
    data = parse_envelope(payload).data
    data = data if isinstance(data, dict) else {}
    users = data.get("users")
    properties = data.get("properties")
    return {
        "totalUsers": _count(users, "total"),
        "totalProperties": _count(properties, "total"),
        "activeListings": _count(properties, "approved"),
        "pendingApprovals": _count(properties, "pending"),
        # Not reported by the backend yet.
        "totalRevenue": 0,
        "monthlyGrowth": 0,
        "newUsersThisMonth": 0,
        "newPropertiesThisMonth": 0,
    }


def adapt_result(result: QueryResult, adapter: Adapter) -> QueryResult:
    """Reshape `result.data`; `None` (nothing loaded yet) stays `None`."""
    if result.data is None:
        return result
    return replace(result, data=adapter(result.data))


ADAPTERS: dict[str, Adapter] = {
    "getProperties": adapt_properties,
    "getPendingProperties": adapt_pending_properties,
    "getAdminProperties": adapt_properties,
    "getUsers": adapt_users,
    "getAllFeedbacks": adapt_feedbacks,
    "getActivities": adapt_activities,
    "getDashboardStats": adapt_dashboard_stats,
    "getFavorites": adapt_favorites,
}

PENDING_PAGE = {"page": 1, "limit": 100}


class AdaptedQueries:
    """Query helpers that hand out view-models instead of raw envelopes."""

    def __init__(self, client: QueryClient) -> None:
        self._client = client

    def read(self, name: str, arg: Any = None) -> QueryResult:
        return adapt_result(self._client.query(name, arg), ADAPTERS[name])

    def subscribe(
        self, name: str, arg: Any = None, listener: Callable[[QueryResult], None] | None = None
    ) -> QuerySubscription:
        adapter = ADAPTERS[name]
        wrapped = None
        if listener is not None:

            def wrapped(result: QueryResult) -> None:
                listener(adapt_result(result, adapter))

        return self._client.subscribe(name, arg, wrapped)

    def get_properties(self, params: dict[str, Any] | None = None) -> QueryResult:
        return self.read("getProperties", params)

    def get_pending_properties(self) -> QueryResult:
        return self.read("getPendingProperties", PENDING_PAGE)

    def get_admin_properties(self, params: dict[str, Any] | None = None) -> QueryResult:
        return self.read("getAdminProperties", params)

    def get_users(self, params: dict[str, Any] | None = None) -> QueryResult:
        return self.read("getUsers", params)

    def get_all_feedbacks(self, params: dict[str, Any] | None = None) -> QueryResult:
        return self.read("getAllFeedbacks", params)

    def get_activities(self, params: dict[str, Any] | None = None) -> QueryResult:
        return self.read("getActivities", params)

    def get_dashboard_stats(self) -> QueryResult:
        return self.read("getDashboardStats")

    def get_favorites(self) -> QueryResult:
        return self.read("getFavorites")

    def subscribe_properties(
        self, params: dict[str, Any] | None = None, listener: Callable[[QueryResult], None] | None = None
    ) -> QuerySubscription:
        return self.subscribe("getProperties", params, listener)

    def subscribe_pending_properties(self, listener: Callable[[QueryResult], None] | None = None) -> QuerySubscription:
        return self.subscribe("getPendingProperties", PENDING_PAGE, listener)
