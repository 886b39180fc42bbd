"""Pydantic v2 schemas for the /api/v1/usage report."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class UsageStatsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_requests: int
    successful_requests: int
    failed_requests: int
    avg_response_time_ms: int
    period_days: int


class TierLimitsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    per_minute: int
    monthly: int
    max_api_keys: int


class UsageLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    endpoint: str
    method: str
    status_code: int
    response_time_ms: int | None
    request_id: str | None
    created_at: datetime


class UsageReport(BaseModel):
    tier: str
    limits: TierLimitsOut
    monthly_usage: int
    stats: UsageStatsOut
    recent: list[UsageLogOut]
