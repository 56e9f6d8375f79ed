"""PACER — Parsed Meta Payload Schemas.

Typed views of the upstream JSON. They are produced by the transformer,
which never raises on missing or malformed numeric fields.
"""

from datetime import date as date_type, datetime
from typing import Optional
from pydantic import BaseModel


class EntityRow(BaseModel):
    """A campaign, ad set or ad as listed by the structure endpoints."""

    level: str
    id: str
    name: str = ""
    status: str = ""
    objective: str = ""
    campaign_id: Optional[str] = None
    adset_id: Optional[str] = None


class InsightRow(BaseModel):
    """One entity-day of metrics with derived rates already computed."""

    level: str
    entity_id: str
    date: date_type
    adset_id: Optional[str] = None
    campaign_id: Optional[str] = None
    spend: float = 0.0
    impressions: int = 0
    clicks: int = 0
    reach: int = 0
    leads: int = 0
    ctr: float = 0.0
    cpm: float = 0.0
    cpc: float = 0.0
    cpl: float = 0.0


class LeadRow(BaseModel):
    """A lead-form submission."""

    lead_id: Optional[str] = None
    created_time: datetime
    form_id: str = ""
    ad_id: str = ""
    adset_id: Optional[str] = None
    campaign_id: Optional[str] = None
    form_data: str = "{}"
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
