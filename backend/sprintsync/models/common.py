"""
Shared schema helpers: camelCase wire models and the response envelope.
"""

import re
import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


def is_valid_id(value: str) -> bool:
    return bool(value) and bool(_ID_PATTERN.match(value))


class CamelModel(BaseModel):
    """Schema serialized with camelCase keys, accepting either case on input."""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class Envelope(BaseModel):
    """Standard response envelope."""
    success: bool = True
    data: Optional[Any] = None
    message: Optional[str] = None


class CollectionEnvelope(Envelope):
    """Envelope for paginated collections."""
    count: int = 0
    pagination: Optional[Pagination] = None


def to_wire(value: Any) -> Any:
    """Dump schemas (or lists of them) to their camelCase JSON form."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, (list, tuple)):
        return [to_wire(v) for v in value]
    return value


def envelope(data: Any = None, message: Optional[str] = None) -> Envelope:
    return Envelope(data=to_wire(data), message=message)


def collection(items: List[Any], total: int, page: int, limit: int) -> CollectionEnvelope:
    pages = (total + limit - 1) // limit if limit else 0
    return CollectionEnvelope(
        data=to_wire(items),
        count=len(items),
        pagination=Pagination(total=total, page=page, limit=limit, pages=pages),
    )


class ListQuery(BaseModel):
    """Filtering, sorting and pagination parameters shared by list endpoints."""
    search: Optional[str] = Field(None, max_length=100)
    sort: Optional[str] = Field(None, max_length=100)
    page: int = Field(1, ge=1)
    limit: int = Field(100, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit
