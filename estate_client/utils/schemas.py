from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class ApiEnvelope(BaseModel):
    """`{ success, message?, data }` wrapper used by every backend response."""

    model_config = ConfigDict(extra="allow")

    success: bool = False
    message: str | None = None
    data: Any = None


class ErrorBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    message: str | None = None
    detail: Any = None


class PageData(BaseModel):
    """
    Paginated payload: `{ <plural>: [...], total, page, totalPages }`.

    The entity list lives under a per-endpoint key, kept as an extra field.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    total: int = 0
    page: int = 1
    total_pages: int = Field(default=1, alias="totalPages")

    @field_validator("page", "total_pages", mode="before")
    @classmethod
    def _at_least_one(cls, v: Any) -> Any:
        return v or 1

    @field_validator("total", mode="before")
    @classmethod
    def _zero_if_missing(cls, v: Any) -> Any:
        return v or 0

    def items(self, plural: str) -> list[Any]:
        v = (self.model_extra or {}).get(plural)
        return list(v) if isinstance(v, list) else []


class UploadedImages(BaseModel):
    images: list[str] | None = None


class UploadResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    success: bool = False
    data: UploadedImages | None = None


def parse_envelope(payload: Any) -> ApiEnvelope:
    try:
        return ApiEnvelope.model_validate(payload)
    except ValidationError:
        logger.debug("Response is not an API envelope: %r", type(payload).__name__)
        return ApiEnvelope()


def parse_page(payload: Any) -> PageData:
    data = parse_envelope(payload).data
    if not isinstance(data, dict):
        return PageData()
    try:
        return PageData.model_validate(data)
    except ValidationError:
        logger.debug("Malformed pagination payload; using defaults")
        return PageData()


def parse_uploaded_images(payload: Any) -> list[str] | None:
    """
    Image URLs created by `POST /properties/upload`.

    None when the response does not carry an image list (nothing to hand back).
    """
    try:
        resp = UploadResponse.model_validate(payload)
    except ValidationError:
        logger.warning("Upload response did not match the expected shape")
        return None
    if not resp.success or resp.data is None:
        return None
    return resp.data.images


def error_message(payload: Any, fallback: str) -> str:
    try:
        body = ErrorBody.model_validate(payload)
    except ValidationError:
        return fallback
    if body.message:
        return body.message
    if isinstance(body.detail, str) and body.detail:
        return body.detail
    return fallback
