"""Pydantic schemas for request/response validation.

Schema Hierarchy
=================
::
    ShortenRequest (Input)
    ├─ url: str (validated URL)
    ├─ short_url: str | None (custom alias)
    └─ expiry: datetime | None (timezone-aware)

    ShortenResponse (Output)
    └─ short_url: str

    AnalyticsResponse (Output)
    ├─ short_url: str
    └─ entries: list[ClickAnalyticsEntry]

    ErrorResponse (Output)
    ├─ error: str
    └─ message: str

Key Behaviours
===============
- URL validation uses the validators library.
- Aliases are 3-100 characters of letters, digits and ``-``; they never start
  with ``_``, which is reserved for encoded ids.
"""

import datetime
import re

import validators
from pydantic import BaseModel, Field, field_validator

from shortener.enums import HealthStatus

__all__ = [
    "ShortenRequest",
    "ShortenResponse",
    "ClickAnalyticsEntry",
    "AnalyticsResponse",
    "ErrorResponse",
    "HealthResponse",
]

_ALIAS_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9-]{2,99}$")
RESERVED_ALIASES = frozenset({"shorten", "health", "metrics", "docs", "redoc", "url"})


class ShortenRequest(BaseModel):
    url: str
    short_url: str | None = Field(None, description="Optional custom alias, e.g. 'docs-2025'")
    expiry: datetime.datetime | None = Field(None, description="Optional expiry timestamp with timezone")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not validators.url(v):
            raise ValueError("Provided URL is invalid")
        return v

    @field_validator("short_url")
    @classmethod
    def validate_alias(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not _ALIAS_PATTERN.match(v):
            raise ValueError("Custom short URL must be 3-100 letters, digits or '-'")
        if v.lower() in RESERVED_ALIASES:
            raise ValueError(f"Custom short URL '{v}' is reserved")
        return v

    @field_validator("expiry")
    @classmethod
    def validate_expiry(cls, v: datetime.datetime | None) -> datetime.datetime | None:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=datetime.UTC)
        return v


class ShortenResponse(BaseModel):
    short_url: str


class ClickAnalyticsEntry(BaseModel):
    time: datetime.datetime
    count: int

    model_config = {"from_attributes": True}


class AnalyticsResponse(BaseModel):
    short_url: str
    entries: list[ClickAnalyticsEntry]


class ErrorResponse(BaseModel):
    error: str
    message: str


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
