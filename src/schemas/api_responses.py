"""
API response schemas for the webhook intake and operator endpoints.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class WebhookAcceptedResponse(BaseModel):
    """Standard webhook intake response."""
    status: str = "accepted"
    event_id: str
    duplicate: bool = False


class WebhookEventDetail(BaseModel):
    id: str
    platform_id: str
    external_event_id: str
    event_type: str
    status: str
    retry_count: int = 0
    error_message: Optional[str] = None
    received_at: datetime
    processed_at: Optional[datetime] = None
    correlation_id: Optional[str] = None


class WebhookEventListResponse(BaseModel):
    events: list[WebhookEventDetail]
    total: int


class WebhookRetryResponse(BaseModel):
    status: str = "requeued"
    event_id: str
    retry_count: int


class SyncTriggerResponse(BaseModel):
    status: str = "started"
    platform: Optional[str] = None
    message: str


class SyncLogSummary(BaseModel):
    id: str
    platform_id: str
    sync_type: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    records_synced: int = 0
    records_failed: int = 0
    missing_records_found: int = 0
    error_details: Optional[dict] = None


class SyncLogListResponse(BaseModel):
    logs: list[SyncLogSummary]
    total: int


class SyncStatsResponse(BaseModel):
    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    total_records_synced: int = 0
    total_missing_found: int = 0
    avg_sync_duration_seconds: float = Field(default=0.0, ge=0)
