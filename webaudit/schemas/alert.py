"""
Web Audit API — Alert Schemas
===============================

What:  Request bodies for admin alert CRUD and the user click tracker, plus
       the alert representation returned to both audiences.
"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from webaudit.models.alert import ALERT_STATUSES


class AlertResponse(BaseModel):
    id: uuid.UUID
    title: str
    message: str
    alert_type: str
    severity: str
    status: str
    is_global: bool
    target_audience: str
    start_date: datetime
    end_date: Optional[datetime] = None
    priority: int
    action_url: Optional[str] = None
    action_text: Optional[str] = None
    dismissible: bool
    auto_expire: bool
    view_count: int = 0
    click_count: int = 0
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AlertListResponse(BaseModel):
    alerts: List[AlertResponse]


class AlertEnvelope(BaseModel):
    alert: AlertResponse


class AlertFields(BaseModel):
    """Fields an admin may set on an alert. All optional for partial updates."""
    title: Optional[str] = None
    message: Optional[str] = None
    alert_type: Optional[str] = None
    severity: Optional[str] = None
    status: Optional[str] = None
    is_global: Optional[bool] = None
    target_audience: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    priority: Optional[int] = Field(default=None, ge=1, le=10)
    action_url: Optional[str] = None
    action_text: Optional[str] = None
    dismissible: Optional[bool] = None
    auto_expire: Optional[bool] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in ALERT_STATUSES:
            raise ValueError(f"Invalid status '{v}'. Must be one of: {ALERT_STATUSES}")
        return v


class AlertCreate(AlertFields):
    pass


class AlertUpdate(AlertFields):
    id: Optional[str] = None


class AlertClick(BaseModel):
    alert_id: Optional[str] = Field(default=None, alias="alertId")

    model_config = {"populate_by_name": True}


class AlertStats(BaseModel):
    total: int
    active: int
    inactive: int
    draft: int
    critical: int
    high_priority: int = Field(serialization_alias="highPriority")
    alerts_by_type: Dict[str, int] = Field(serialization_alias="alertsByType")
    alerts_by_severity: Dict[str, int] = Field(serialization_alias="alertsBySeverity")
    recent_alerts: List[AlertResponse] = Field(serialization_alias="recentAlerts")


class AlertStatsResponse(BaseModel):
    stats: AlertStats
