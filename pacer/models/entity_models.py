"""PACER — Ad Structure Models (Campaign → AdSet → Ad).

Parent references are plain indexed columns, not database foreign keys:
a child may be ingested before its parent, and the reference can be null
until the relationship backfiller repairs it.
"""

from datetime import datetime, timezone
from typing import Optional
from sqlmodel import SQLModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Campaign(SQLModel, table=True):
    """Top-level Meta campaign."""

    __tablename__ = "campaigns"

    id: str = Field(primary_key=True, description="Meta campaign id")
    name: str = Field(default="")
    status: str = Field(default="", index=True)
    objective: str = Field(default="")
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class AdSet(SQLModel, table=True):
    """Ad set; the unit goals are contracted against."""

    __tablename__ = "adsets"

    id: str = Field(primary_key=True, description="Meta adset id")
    name: str = Field(default="")
    status: str = Field(default="", index=True)
    campaign_id: Optional[str] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class Ad(SQLModel, table=True):
    """Single ad. `campaign_id` is denormalized from the parent ad set."""

    __tablename__ = "ads"

    id: str = Field(primary_key=True, description="Meta ad id")
    name: str = Field(default="")
    status: str = Field(default="", index=True)
    adset_id: Optional[str] = Field(default=None, index=True)
    campaign_id: Optional[str] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


ENTITY_MODELS = {
    "campaign": Campaign,
    "adset": AdSet,
    "ad": Ad,
}
