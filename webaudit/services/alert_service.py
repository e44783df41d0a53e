"""
Web Audit API — Alert Service
===============================

What:  Visible-alert lookup for users, engagement counters, admin CRUD and
       the admin dashboard statistics.
How:   Counters are incremented with `UPDATE ... SET n = n + 1` so
       concurrent views never lose increments.
"""

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from webaudit.exceptions import NotFoundError, ValidationError
from webaudit.models.alert import AdminAlert
from webaudit.schemas.alert import AlertFields
from webaudit.validators import is_blank, parse_uuid

logger = logging.getLogger(__name__)

_DEFAULTS = {
    "alert_type": "info",
    "severity": "medium",
    "status": "active",
    "is_global": True,
    "target_audience": "all",
    "priority": 1,
    "dismissible": True,
    "auto_expire": False,
}


class AlertService:

    # ── User side ─────────────────────────────────────────────────────────

    async def visible_alerts(self, db: AsyncSession, plan: Optional[str]) -> List[AdminAlert]:
        """Active alerts inside their window aimed at everyone or at `plan`."""
        now = datetime.now(timezone.utc)
        audience = plan or "free"
        result = await db.execute(
            select(AdminAlert)
            .where(AdminAlert.status == "active")
            .where(AdminAlert.start_date <= now)
            .where(or_(AdminAlert.end_date.is_(None), AdminAlert.end_date >= now))
            .where(AdminAlert.target_audience.in_(["all", audience]))
            .order_by(AdminAlert.priority.desc(), AdminAlert.created_at.desc())
        )
        alerts = list(result.scalars().all())

        if alerts:
            await db.execute(
                update(AdminAlert)
                .where(AdminAlert.id.in_([a.id for a in alerts]))
                .values(view_count=AdminAlert.view_count + 1)
            )
        return alerts

    async def record_click(self, db: AsyncSession, alert_id: Any) -> None:
        if is_blank(alert_id):
            raise ValidationError(message="Alert ID is required", field="alertId")
        aid = parse_uuid(alert_id, "alertId")
        result = await db.execute(
            update(AdminAlert)
            .where(AdminAlert.id == aid)
            .values(click_count=AdminAlert.click_count + 1)
        )
        if result.rowcount == 0:
            raise NotFoundError(resource="alert", resource_id=str(aid))

    # ── Admin side ────────────────────────────────────────────────────────

    async def list_alerts(
        self,
        db: AsyncSession,
        status: Optional[str] = None,
        alert_type: Optional[str] = None,
        severity: Optional[str] = None,
    ) -> List[AdminAlert]:
        stmt = select(AdminAlert).order_by(AdminAlert.created_at.desc())
        # 'all' means "no filter" in the admin UI's dropdowns
        if status and status != "all":
            stmt = stmt.where(AdminAlert.status == status)
        if alert_type and alert_type != "all":
            stmt = stmt.where(AdminAlert.alert_type == alert_type)
        if severity and severity != "all":
            stmt = stmt.where(AdminAlert.severity == severity)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def get_alert(self, db: AsyncSession, alert_id: Any) -> AdminAlert:
        aid = parse_uuid(alert_id, "id")
        result = await db.execute(select(AdminAlert).where(AdminAlert.id == aid))
        alert = result.scalar_one_or_none()
        if alert is None:
            raise NotFoundError(resource="alert", resource_id=str(aid))
        return alert

    async def create_alert(self, db: AsyncSession, fields: AlertFields) -> AdminAlert:
        if is_blank(fields.title) or is_blank(fields.message):
            raise ValidationError(message="Title and message are required")

        values = {**_DEFAULTS, **fields.model_dump(exclude_none=True)}
        values.setdefault("start_date", datetime.now(timezone.utc))
        alert = AdminAlert(created_at=datetime.now(timezone.utc), **values)
        db.add(alert)
        await db.flush()
        logger.info("Alert created: %s (%s, priority %s)", alert.title, alert.severity, alert.priority)
        return alert

    async def update_alert(self, db: AsyncSession, alert_id: Any, fields: AlertFields) -> AdminAlert:
        if is_blank(alert_id):
            raise ValidationError(message="Alert ID is required", field="id")
        alert = await self.get_alert(db, alert_id)

        updates = fields.model_dump(exclude_unset=True, exclude={"id"})
        for key in ("title", "message"):
            if key in updates and is_blank(updates[key]):
                raise ValidationError(message=f"{key.capitalize()} cannot be empty", field=key)
        for key, value in updates.items():
            # Nullable columns may be cleared; required ones keep their value
            if value is None and key not in ("end_date", "action_url", "action_text"):
                continue
            setattr(alert, key, value)
        alert.updated_at = datetime.now(timezone.utc)

        await db.flush()
        return alert

    async def delete_alert(self, db: AsyncSession, alert_id: Any) -> None:
        if is_blank(alert_id):
            raise ValidationError(message="Alert ID is required", field="id")
        aid = parse_uuid(alert_id, "id")
        result = await db.execute(delete(AdminAlert).where(AdminAlert.id == aid))
        if result.rowcount == 0:
            raise NotFoundError(resource="alert", resource_id=str(aid))
        logger.info("Alert %s deleted", aid)

    async def stats(self, db: AsyncSession) -> Dict[str, Any]:
        result = await db.execute(select(AdminAlert).order_by(AdminAlert.created_at.desc()))
        alerts = list(result.scalars().all())

        by_status = Counter(a.status for a in alerts)
        active = [a for a in alerts if a.status == "active"]
        return {
            "total": len(alerts),
            "active": by_status["active"],
            "inactive": by_status["inactive"],
            "draft": by_status["draft"],
            "critical": sum(1 for a in active if a.severity == "critical"),
            "high_priority": sum(1 for a in active if a.priority >= 8),
            "alerts_by_type": dict(Counter(a.alert_type for a in active)),
            "alerts_by_severity": dict(Counter(a.severity for a in active)),
            "recent_alerts": alerts[:5],
        }


alert_service = AlertService()
