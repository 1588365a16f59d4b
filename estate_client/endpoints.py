"""
Catalog of backend operations.

Each query declares the tags its result provides; each mutation declares
the tags it invalidates. The QueryClient uses these declarations to keep
cached reads consistent after writes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Union

Tag = tuple[str, Union[str, None]]
TagSpec = Union[tuple, Callable[[Any, Any, Any], Iterable[Any]]]

AUTH = "Auth"
PROPERTY = "Property"
USER = "User"
FEEDBACK = "Feedback"
ACTIVITY = "Activity"
STATS = "Stats"
MESSAGE = "Message"
REQUIREMENT = "Requirement"

TAG_TYPES = (AUTH, PROPERTY, USER, FEEDBACK, ACTIVITY, STATS, MESSAGE, REQUIREMENT)


@dataclass(frozen=True)
class Request:
    url: str
    method: str = "GET"
    params: dict[str, Any] | None = None
    json: Any = None
    data: dict[str, Any] | None = None
    files: Any = None


@dataclass(frozen=True)
class QueryOperation:
    name: str
    build: Callable[[Any], Request]
    provides: TagSpec = ()


@dataclass(frozen=True)
class MutationOperation:
    name: str
    build: Callable[[Any], Request]
    invalidates: TagSpec = ()


Operation = Union[QueryOperation, MutationOperation]


def normalize_tag(raw: Any) -> Tag:
    if isinstance(raw, str):
        return (raw, None)
    if isinstance(raw, dict):
        ident = raw.get("id")
        return (str(raw["type"]), None if ident is None else str(ident))
    kind, ident = raw
    return (str(kind), None if ident is None else str(ident))


def resolve_tags(spec: TagSpec, result: Any = None, error: Any = None, arg: Any = None) -> set[Tag]:
    raw = spec(result, error, arg) if callable(spec) else spec
    return {normalize_tag(t) for t in (raw or ())}


def _by_id(kind: str) -> Callable[[Any, Any, Any], list[Tag]]:
    return lambda _result, _error, ident: [(kind, ident)]


def _files(field: str, files: Iterable[Any]) -> list[tuple[str, tuple[str, bytes, str]]]:
    return [(field, (f.name, f.content, f.content_type)) for f in files]


def _page(arg: dict[str, Any] | None) -> dict[str, Any]:
    arg = arg or {}
    return {"page": arg.get("page"), "limit": arg.get("limit")}


_CATALOG: tuple[Operation, ...] = (
    # Auth / profile
    MutationOperation("login", lambda creds: Request("/auth/login", "POST", json=creds), (AUTH,)),
    MutationOperation("register", lambda user: Request("/auth/register", "POST", json=user), (AUTH,)),
    MutationOperation("logout", lambda _=None: Request("/auth/logout", "POST"), (AUTH,)),
    QueryOperation("getProfile", lambda _=None: Request("/auth/profile"), (AUTH,)),
    MutationOperation("updateProfile", lambda data: Request("/auth/profile", "PUT", json=data), (AUTH,)),
    MutationOperation("changePassword", lambda pw: Request("/auth/change-password", "PUT", json=pw)),
    MutationOperation(
        "toggleFavorite", lambda pid: Request("/auth/favorites", "POST", json={"propertyId": pid}), (AUTH,)
    ),
    MutationOperation("removeFavorite", lambda pid: Request(f"/auth/favorites/{pid}", "DELETE"), (AUTH,)),
    QueryOperation("getFavorites", lambda _=None: Request("/auth/favorites"), (PROPERTY,)),
    # Properties
    QueryOperation("getProperties", lambda params: Request("/properties", params=params), (PROPERTY,)),
    QueryOperation("searchProperties", lambda params: Request("/properties/search", params=params), (PROPERTY,)),
    QueryOperation("getPropertyById", lambda pid: Request(f"/properties/{pid}"), _by_id(PROPERTY)),
    QueryOperation(
        "getPropertiesByAgent",
        lambda arg: Request(f"/properties/agent/{arg['agentId']}", params=_page(arg)),
        (PROPERTY,),
    ),
    MutationOperation("createProperty", lambda data: Request("/properties", "POST", json=data), (PROPERTY, STATS)),
    MutationOperation(
        "updateProperty", lambda arg: Request(f"/properties/{arg['id']}", "PUT", json=arg.get("data")), (PROPERTY,)
    ),
    MutationOperation("deleteProperty", lambda pid: Request(f"/properties/{pid}", "DELETE"), (PROPERTY, STATS)),
    MutationOperation(
        "togglePropertyStatus", lambda pid: Request(f"/properties/{pid}/toggle-status", "PATCH"), (PROPERTY,)
    ),
    MutationOperation(
        "trackPropertyView", lambda pid: Request(f"/properties/{pid}/track-view", "POST"), _by_id(PROPERTY)
    ),
    MutationOperation(
        "uploadPropertyImages",
        lambda arg: Request(
            "/properties/upload",
            "POST",
            data={"propertyId": str(arg["propertyId"])},
            files=_files("images", arg["files"]),
        ),
    ),
    # Admin
    QueryOperation("getDashboardStats", lambda _=None: Request("/admin/stats"), (STATS,)),
    QueryOperation("getAdminProperties", lambda params: Request("/admin/properties", params=params), (PROPERTY,)),
    QueryOperation(
        "getPendingProperties", lambda params: Request("/admin/properties/pending", params=params), (PROPERTY,)
    ),
    MutationOperation(
        "approveProperty", lambda pid: Request(f"/admin/properties/{pid}/approve", "PUT"), (PROPERTY, STATS, ACTIVITY)
    ),
    MutationOperation(
        "rejectProperty",
        lambda arg: Request(f"/admin/properties/{arg['id']}/reject", "PUT", json={"reason": arg.get("reason")}),
        (PROPERTY, STATS, ACTIVITY),
    ),
    MutationOperation(
        "deletePropertyAdmin", lambda pid: Request(f"/admin/properties/{pid}", "DELETE"), (PROPERTY, STATS, ACTIVITY)
    ),
    QueryOperation("getUsers", lambda params: Request("/admin/users", params=params), (USER,)),
    QueryOperation("getAgents", lambda params: Request("/admin/agents", params=params), (USER,)),
    MutationOperation("deactivateAgent", lambda uid: Request(f"/admin/agents/{uid}/deactivate", "PUT"), (USER, ACTIVITY)),
    MutationOperation("activateAgent", lambda uid: Request(f"/admin/agents/{uid}/activate", "PUT"), (USER, ACTIVITY)),
    MutationOperation("blockUser", lambda uid: Request(f"/admin/users/{uid}/block", "PUT"), (USER, ACTIVITY)),
    MutationOperation("unblockUser", lambda uid: Request(f"/admin/users/{uid}/unblock", "PUT"), (USER, ACTIVITY)),
    MutationOperation("deleteUser", lambda uid: Request(f"/admin/users/{uid}", "DELETE"), (USER, ACTIVITY)),
    QueryOperation("getActivities", lambda params: Request("/admin/activities", params=params), (ACTIVITY,)),
    QueryOperation(
        "getRecentActivities", lambda params: Request("/admin/activities/recent", params=params), (ACTIVITY,)
    ),
    # Feedback
    QueryOperation("getAllFeedbacks", lambda params: Request("/feedback/admin/all", params=params), (FEEDBACK,)),
    QueryOperation(
        "getFeedbacksByStatus",
        lambda arg: Request(f"/admin/feedbacks/status/{arg['status']}", params=_page(arg)),
        (FEEDBACK,),
    ),
    MutationOperation(
        "respondToFeedback",
        lambda arg: Request(
            f"/feedback/admin/{arg['id']}/respond",
            "PUT",
            json={"adminResponse": arg.get("adminResponse"), "status": arg.get("status")},
        ),
        (FEEDBACK, ACTIVITY),
    ),
    MutationOperation("createFeedback", lambda data: Request("/feedbacks", "POST", json=data), (FEEDBACK,)),
    QueryOperation("getMyFeedbacks", lambda params: Request("/feedbacks/my-feedbacks", params=params), (FEEDBACK,)),
    QueryOperation("getFeedbackById", lambda fid: Request(f"/feedbacks/{fid}"), _by_id(FEEDBACK)),
    QueryOperation(
        "getPropertyFeedbacks",
        lambda arg: Request(f"/feedbacks/property/{arg['propertyId']}", params=_page(arg)),
        (FEEDBACK,),
    ),
    QueryOperation("getPropertyAverageRating", lambda pid: Request(f"/feedbacks/property/{pid}/rating")),
    MutationOperation(
        "updateFeedback", lambda arg: Request(f"/feedbacks/{arg['id']}", "PUT", json=arg.get("data")), (FEEDBACK,)
    ),
    MutationOperation("deleteFeedback", lambda fid: Request(f"/feedbacks/{fid}", "DELETE"), (FEEDBACK,)),
    # Tours
    QueryOperation("getMyTours", lambda _=None: Request("/tours/my-tours"), (PROPERTY,)),
    QueryOperation("getAgentTours", lambda _=None: Request("/tours/agent-tours"), (PROPERTY,)),
    MutationOperation("scheduleTour", lambda data: Request("/tours/schedule", "POST", json=data), (PROPERTY,)),
    MutationOperation(
        "updateTourStatus",
        lambda arg: Request(f"/tours/{arg['tourId']}/status", "PUT", json={"status": arg.get("status")}),
        (PROPERTY,),
    ),
    # Messages
    QueryOperation("getMyMessages", lambda _=None: Request("/messages/my-messages"), (MESSAGE,)),
    QueryOperation("getMessageStats", lambda _=None: Request("/messages/stats"), (MESSAGE,)),
    QueryOperation("getMessage", lambda mid: Request(f"/messages/{mid}"), _by_id(MESSAGE)),
    MutationOperation("markMessageAsRead", lambda mid: Request(f"/messages/{mid}/read", "PATCH"), (MESSAGE,)),
    MutationOperation("toggleMessageArchive", lambda mid: Request(f"/messages/{mid}/archive", "PATCH"), (MESSAGE,)),
    MutationOperation("deleteMessage", lambda mid: Request(f"/messages/{mid}", "DELETE"), (MESSAGE,)),
    MutationOperation("sendMessage", lambda data: Request("/messages/send", "POST", json=data), (MESSAGE,)),
    # Property requirements (buyer leads)
    QueryOperation(
        "getAllRequirements", lambda filters: Request("/property-requirements", params=filters), (REQUIREMENT,)
    ),
    QueryOperation("getRequirementStats", lambda _=None: Request("/property-requirements/stats"), (REQUIREMENT,)),
    QueryOperation("getRequirementById", lambda rid: Request(f"/property-requirements/{rid}"), _by_id(REQUIREMENT)),
    MutationOperation(
        "createRequirement", lambda data: Request("/property-requirements", "POST", json=data), (REQUIREMENT,)
    ),
    MutationOperation(
        "updateRequirement",
        lambda arg: Request(f"/property-requirements/{arg['id']}", "PUT", json=arg.get("data")),
        (REQUIREMENT,),
    ),
    MutationOperation(
        "deleteRequirement", lambda rid: Request(f"/property-requirements/{rid}", "DELETE"), (REQUIREMENT,)
    ),
    MutationOperation(
        "updateRequirementStatus",
        lambda arg: Request(
            f"/property-requirements/{arg['id']}/status",
            "PATCH",
            json={"status": arg.get("status"), "notes": arg.get("notes")},
        ),
        (REQUIREMENT,),
    ),
    MutationOperation(
        "assignRequirementAgent",
        lambda arg: Request(
            f"/property-requirements/{arg['id']}/assign", "PATCH", json={"agentId": arg.get("agentId")}
        ),
        (REQUIREMENT,),
    ),
)

OPERATIONS: dict[str, Operation] = {op.name: op for op in _CATALOG}
