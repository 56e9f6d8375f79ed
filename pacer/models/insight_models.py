"""PACER — Insight & Lead Models.

`InsightRecord` holds one row per (entity_id, date); re-ingesting the same
key overwrites the row. `MetaLead` holds inbound form submissions, which are
deduplicated by business key rather than by primary key.
"""

from datetime import date as date_type, datetime, timezone
from typing import Optional
from sqlmodel import SQLModel, Field, UniqueConstraint


class InsightRecord(SQLModel, table=True):
    """Daily performance metrics for a campaign, ad set or ad."""

    __tablename__ = "insight_records"
    __table_args__ = (
        UniqueConstraint("entity_id", "date", name="uq_insight_entity_date"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    level: str = Field(index=True, description="campaign | adset | ad")
    entity_id: str = Field(index=True, description="Meta entity id")
    date: date_type = Field(index=True)
    adset_id: Optional[str] = Field(default=None, index=True)
    campaign_id: Optional[str] = Field(default=None, index=True)

    spend: float = 0.0
    impressions: int = 0
    clicks: int = 0
    reach: int = 0
    leads: int = 0

    ctr: float = 0.0
    cpm: float = 0.0
    cpc: float = 0.0
    cpl: float = 0.0

    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MetaLead(SQLModel, table=True):
    """An inbound lead-form submission.

    `lead_id` is absent for leads imported from sources without a stable
    upstream id, so the reconciler matches on
    (created_time, form_id, ad_id) before inserting.
    """

    __tablename__ = "meta_leads"

    id: Optional[int] = Field(default=None, primary_key=True)
    lead_id: Optional[str] = Field(default=None, index=True)
    created_time: datetime = Field(index=True, description="UTC")
    form_id: str = Field(default="", index=True)
    ad_id: str = Field(default="", index=True)
    adset_id: Optional[str] = Field(default=None, index=True)
    campaign_id: Optional[str] = Field(default=None, index=True)

    form_data: str = Field(default="{}", description="Flattened field_data JSON")
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
