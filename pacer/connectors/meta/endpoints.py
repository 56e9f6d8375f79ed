"""PACER — Meta API Endpoints.

Fetch functions for the structure and lead endpoints. Each returns the raw
JSON records; parsing happens in the transformer.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from pacer.connectors.meta.client import MetaClient
from pacer.core.logging import get_logger

logger = get_logger("meta.endpoints")

CAMPAIGN_FIELDS = "id,name,status,effective_status,objective"
ADSET_FIELDS = "id,name,campaign_id,status,effective_status"
AD_FIELDS = "id,name,adset_id,campaign_id,status,effective_status"
LEAD_FIELDS = "id,created_time,field_data,ad_id,adset_id,campaign_id,form_id"

STRUCTURE_PAGE_LIMIT = 500
LEAD_PAGE_LIMIT = 100


class MetaEndpoints:
    """Structure and lead listings for one ad account."""

    def __init__(self, client: MetaClient, account_id: str):
        self.client = client
        self.account_id = account_id

    async def _fetch_structure(self, edge: str, fields: str) -> List[Dict[str, Any]]:
        params = {"fields": fields, "limit": STRUCTURE_PAGE_LIMIT}
        data = await self.client.paginate(f"{self.account_id}/{edge}", params)
        logger.info(f"Fetched {len(data)} {edge}")
        return data

    # ── Structure Endpoints (Campaigns, Adsets, Ads) ──

    async def fetch_campaigns(self) -> List[Dict[str, Any]]:
        return await self._fetch_structure("campaigns", CAMPAIGN_FIELDS)

    async def fetch_adsets(self) -> List[Dict[str, Any]]:
        return await self._fetch_structure("adsets", ADSET_FIELDS)

    async def fetch_ads(self) -> List[Dict[str, Any]]:
        return await self._fetch_structure("ads", AD_FIELDS)

    # ── Leads ──

    async def fetch_leads(
        self, campaign_id: str, since: datetime | None = None, days: int = 90
    ) -> List[Dict[str, Any]]:
        """Lead-form submissions for one campaign created after `since`."""
        if since is None:
            since = datetime.now(timezone.utc) - timedelta(days=days)
        params = {
            "fields": LEAD_FIELDS,
            "limit": LEAD_PAGE_LIMIT,
            "filtering": json.dumps(
                [
                    {
                        "field": "time_created",
                        "operator": "GREATER_THAN",
                        "value": int(since.timestamp()),
                    }
                ]
            ),
        }
        data = await self.client.paginate(f"{campaign_id}/leads", params)
        logger.info(
            f"Fetched {len(data)} leads for campaign {campaign_id}",
            extra={"entity_id": campaign_id},
        )
        return data
