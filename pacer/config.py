"""PACER — Central Configuration via Pydantic Settings."""

import os
from typing import List
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Meta API ──
    meta_access_token: str = ""
    meta_ad_account_id: str = ""
    meta_api_version: str = "v21.0"
    meta_base_url: str = "https://graph.facebook.com"

    # ── Database ──
    database_url: str = ""

    # ── App ──
    log_level: str = "INFO"
    scheduler_enabled: bool = True
    sync_hour: int = 3  # Daily sync at 3 AM
    tracking_hour: int = 5  # Goal tracking after the sync window

    # ── Fetch / Rate limiting ──
    request_min_interval: float = 0.5  # seconds between upstream calls
    retry_base_delay: float = 1.0
    retry_multiplier: float = 2.0
    max_retries: int = 3
    max_pages: int = 50
    http_timeout: float = 30.0

    # ── Collection ──
    batch_size: int = 50  # ids per multi-entity request
    insight_days: int = 30
    leads_days: int = 90
    sync_active_only: bool = True
    lead_action_types: List[str] = ["onsite_conversion.lead_grouped", "lead"]

    # ── Backfill ──
    backfill_page_size: int = 100
    backfill_max_passes: int = 5

    # ── Goals ──
    deviation_threshold: float = 10.0
    risk_multiplier: float = 1.5
    goal_lead_source: str = "leads"  # leads | insights

    @property
    def account_id(self) -> str:
        """Ad account id with the act_ prefix Meta expects."""
        if not self.meta_ad_account_id:
            return ""
        if self.meta_ad_account_id.startswith("act_"):
            return self.meta_ad_account_id
        return f"act_{self.meta_ad_account_id}"

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/pacer.db"
        return "sqlite:///./pacer.db"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
