"""
Web Audit API — Feature Access and Plan Expiry Schemas
========================================================

What:  Bodies for feature checks, crawl validation and plan-expiry reports.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class FeatureAccessRequest(BaseModel):
    feature_id: Optional[str] = Field(default=None, alias="featureId")

    model_config = {"populate_by_name": True}


class ValidateCrawlRequest(BaseModel):
    user_id: Optional[str] = Field(default=None, alias="userId")
    crawl_type: str = Field(default="single", alias="crawlType")
    requested_features: List[str] = Field(default_factory=list, alias="requestedFeatures")

    model_config = {"populate_by_name": True}


class ProjectLimit(BaseModel):
    current: int
    max: int


class ValidateCrawlResponse(BaseModel):
    valid: bool = True
    user_plan: Optional[str] = Field(serialization_alias="userPlan")
    allowed_features: List[str] = Field(serialization_alias="allowedFeatures")
    project_limit: ProjectLimit = Field(serialization_alias="projectLimit")


class PlanExpiryResponse(BaseModel):
    is_expired: bool
    expires_at: Optional[datetime] = None
    days_until_expiry: Optional[int] = None
    billing_cycle: Optional[str] = None
    plan_type: str


class DowngradeResponse(BaseModel):
    success: bool = True
    message: str
    plan_type: str
    is_expired: bool
    downgraded: bool = False
    expires_at: Optional[datetime] = None
    previous_plan: Optional[str] = None
    new_plan: Optional[str] = None


class CronResult(BaseModel):
    success: bool = True
    message: str
    processed_count: int
    error_count: int
    processed_users: List[Dict[str, Any]]
    errors: List[Dict[str, Any]]
