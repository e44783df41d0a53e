"""
Web Audit API — Plan-Based Feature Gating
===========================================

What:  Resolves a user's effective plan and answers "may this user use
       feature X / start this crawl / create another project?".
Why:   The gated endpoints (crawl validation, image analysis, the dashboard's
       feature checks) must agree on one definition of a user's plan.
How:   The newest active subscription wins; without one, the active Starter
       plan applies; without that, the user has no plan and every check
       fails closed.

Plan resolution:
    subscriptions (status='active', newest) ─┐
                                             ├─▶ UserPlanInfo
    plans (plan_type='Starter', is_active) ──┘   (or None)
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from webaudit.exceptions import PermissionDeniedError, PlanAccessError, ValidationError
from webaudit.features import get_feature
from webaudit.models.audit import AuditProject
from webaudit.models.plan import Plan, Subscription
from webaudit.validators import is_blank, parse_uuid

logger = logging.getLogger(__name__)

NO_PLAN = "No plan found for user"


@dataclass
class UserPlanInfo:
    plan_type: str
    plan_id: uuid.UUID
    plan_name: str
    can_use_features: List[str]
    max_projects: int

    @classmethod
    def from_plan(cls, plan: Plan) -> "UserPlanInfo":
        return cls(
            plan_type=plan.plan_type,
            plan_id=plan.id,
            plan_name=plan.name,
            can_use_features=list(plan.can_use_features or []),
            # 0 is treated as "not set"; -1 means unlimited
            max_projects=plan.max_projects or 1,
        )


@dataclass
class FeatureAccessResult:
    has_access: bool
    user_plan: Optional[str]
    allowed_features: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class ProjectLimitResult:
    can_create: bool
    current_count: int
    max_projects: int
    error: Optional[str] = None


class FeatureAccessService:

    async def get_user_plan_info(self, db: AsyncSession, user_id: uuid.UUID) -> Optional[UserPlanInfo]:
        result = await db.execute(
            select(Plan)
            .join(Subscription, Subscription.plan_id == Plan.id)
            .where(Subscription.user_id == user_id, Subscription.status == "active")
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        plan = result.scalars().first()
        if plan is not None:
            return UserPlanInfo.from_plan(plan)

        result = await db.execute(
            select(Plan)
            .where(Plan.plan_type == "Starter", Plan.is_active.is_(True))
            .order_by(Plan.sort_order.asc())
            .limit(1)
        )
        starter = result.scalars().first()
        if starter is None:
            logger.warning("No active subscription or Starter plan for user %s", user_id)
            return None
        return UserPlanInfo.from_plan(starter)

    async def check_feature_access(
        self, db: AsyncSession, user_id: uuid.UUID, feature_id: str
    ) -> FeatureAccessResult:
        info = await self.get_user_plan_info(db, user_id)
        if info is None:
            return FeatureAccessResult(has_access=False, user_plan=None, error=NO_PLAN)

        has_access = feature_id in info.can_use_features
        return FeatureAccessResult(
            has_access=has_access,
            user_plan=info.plan_type,
            allowed_features=info.can_use_features,
            error=None if has_access else f"Feature '{feature_id}' not available in {info.plan_type} plan",
        )

    async def require_feature(self, db: AsyncSession, user_id: uuid.UUID, feature_id: str) -> None:
        """Raises PlanAccessError (403) unless the user's plan includes the feature."""
        access = await self.check_feature_access(db, user_id, feature_id)
        if not access.has_access:
            logger.info("User %s denied feature %s (%s)", user_id, feature_id, access.user_plan)
            raise PlanAccessError(
                message=access.error,
                user_plan=access.user_plan,
                required_feature=feature_id,
            )

    @staticmethod
    def crawl_feature(crawl_type: str) -> str:
        return "single_page_crawl" if crawl_type == "single" else "full_site_crawl"

    async def check_crawl_access(
        self, db: AsyncSession, user_id: uuid.UUID, crawl_type: str
    ) -> FeatureAccessResult:
        return await self.check_feature_access(db, user_id, self.crawl_feature(crawl_type))

    async def check_project_limit(self, db: AsyncSession, user_id: uuid.UUID) -> ProjectLimitResult:
        info = await self.get_user_plan_info(db, user_id)
        if info is None:
            return ProjectLimitResult(can_create=False, current_count=0, max_projects=0, error=NO_PLAN)

        result = await db.execute(
            select(func.count()).select_from(AuditProject).where(AuditProject.user_id == user_id)
        )
        current = result.scalar_one() or 0
        limit = info.max_projects
        can_create = limit == -1 or current < limit

        error = None
        if not can_create:
            plural = "" if limit == 1 else "s"
            error = (
                f"Project limit reached. You can create {limit} project{plural} "
                "with your current plan."
            )
        return ProjectLimitResult(can_create=can_create, current_count=current, max_projects=limit, error=error)

    async def split_requested_features(
        self, db: AsyncSession, user_id: uuid.UUID, requested: List[str]
    ) -> Dict[str, List[str]]:
        """Partitions requested feature ids into allowed and denied with messages."""
        info = await self.get_user_plan_info(db, user_id)
        if info is None:
            return {"allowed": [], "denied": list(requested), "errors": [NO_PLAN]}

        allowed, denied, errors = [], [], []
        for feature_id in requested:
            if feature_id in info.can_use_features:
                allowed.append(feature_id)
                continue
            denied.append(feature_id)
            feature = get_feature(feature_id)
            name = feature.name if feature else feature_id
            errors.append(f"Feature '{name}' is not available in your {info.plan_type} plan")
        return {"allowed": allowed, "denied": denied, "errors": errors}

    async def plan_summary(self, db: AsyncSession, user_id: uuid.UUID, feature_id: Optional[str]) -> Dict[str, Any]:
        """Body of POST /api/check-feature-access."""
        info = await self.get_user_plan_info(db, user_id)
        if info is None:
            return {"hasAccess": False, "userPlan": None, "allowedFeatures": [], "error": NO_PLAN}

        if not feature_id:
            return {
                "hasAccess": True,
                "userPlan": info.plan_type,
                "allowedFeatures": info.can_use_features,
                "maxProjects": info.max_projects,
            }

        has_access = feature_id in info.can_use_features
        body: Dict[str, Any] = {
            "hasAccess": has_access,
            "userPlan": info.plan_type,
            "allowedFeatures": info.can_use_features,
        }
        if not has_access:
            body["error"] = f"Feature '{feature_id}' not available in {info.plan_type} plan"
        return body

    async def validate_crawl(
        self,
        db: AsyncSession,
        user_id: Any,
        crawl_type: str,
        requested_features: List[str],
    ) -> Dict[str, Any]:
        """
        Gatekeeper for starting a crawl: crawl type, project limit, then every
        requested feature. The first failing check produces a 403.
        """
        if is_blank(user_id):
            raise ValidationError(message="User ID is required", field="userId")
        uid = parse_uuid(user_id, "userId")

        crawl = await self.check_crawl_access(db, uid, crawl_type)
        if not crawl.has_access:
            raise PlanAccessError(
                message=crawl.error,
                user_plan=crawl.user_plan,
                required_feature=self.crawl_feature(crawl_type),
            )

        limit = await self.check_project_limit(db, uid)
        if not limit.can_create:
            raise PermissionDeniedError(
                message=limit.error,
                error_code="project_limit_reached",
                extra={"currentCount": limit.current_count, "maxProjects": limit.max_projects},
            )

        split = await self.split_requested_features(db, uid, requested_features or [])
        if split["denied"]:
            raise PermissionDeniedError(
                message="Some requested features are not available in your plan",
                error_code="feature_access_denied",
                extra={
                    "deniedFeatures": split["denied"],
                    "allowedFeatures": split["allowed"],
                    "errors": split["errors"],
                },
            )

        return {
            "valid": True,
            "user_plan": crawl.user_plan,
            "allowed_features": split["allowed"],
            "project_limit": {"current": limit.current_count, "max": limit.max_projects},
        }


feature_access_service = FeatureAccessService()
