from datetime import datetime, timezone
from typing import Annotated, Any
import uuid

from pydantic import BaseModel, BeforeValidator, Field, field_validator


def gen_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _none_as_empty(value: Any) -> Any:
    return "" if value is None else value


# optional free text: stored records and forms may carry null
Text = Annotated[str, BeforeValidator(_none_as_empty)]


def as_utc(value: datetime) -> datetime:
    """Naive timestamps from older records are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TimeStamped(BaseModel):
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    def touch(self, now: datetime | None = None):
        object.__setattr__(self, "updated_at", as_utc(now or utcnow()))
