"""
Web Audit API — Admin Reporting
=================================

What:  Read-only aggregates for the admin dashboard: the activity feed,
       headline counters, revenue statistics, chart series and the global
       payment ledger.
Why:   The dashboard polls these; each answer is computed from live rows
       instead of being kept in summary tables.
How:   Counts are done in SQL. Anything grouped by calendar month or plan is
       fetched as plain rows and folded in Python by the pure helpers below,
       which are what the tests exercise.

Chart types:
    revenue   [{month, revenue, users}]     completed payments per month
    users     [{month, newUsers, totalUsers}] first payment per user
    plans     [{name, value, color}]        completed payments per plan
"""

import logging
from collections import OrderedDict
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from webaudit.exceptions import ValidationError
from webaudit.models.audit import AuditProject, ScrapedPage
from webaudit.models.payment import Payment
from webaudit.models.support import SupportTicket
from webaudit.models.user import User
from webaudit.validators import parse_uuid

logger = logging.getLogger(__name__)

CHART_TYPES = ("revenue", "users", "plans")
PLAN_COLORS = ("#3b82f6", "#10b981", "#f59e0b", "#ef4444", "#8b5cf6", "#06b6d4")
FEED_SIZE = 5


# ══════════════════════════════════════════════════════════════════════════
# Pure helpers
# ══════════════════════════════════════════════════════════════════════════

def relative_time(moment: datetime, now: Optional[datetime] = None) -> str:
    """'Just now', 'N minutes ago', 'N hours ago', 'N days ago', else the date."""
    now = now or datetime.now(timezone.utc)
    minutes = int((now - moment).total_seconds() // 60)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes > 1 else ''} ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours > 1 else ''} ago"
    days = hours // 24
    if days < 7:
        return f"{days} day{'s' if days > 1 else ''} ago"
    return moment.date().isoformat()


def month_label(moment: datetime) -> str:
    return moment.strftime("%b %Y")


def audit_status(score: Optional[int]) -> str:
    score = score or 0
    if score >= 80:
        return "success"
    if score >= 50:
        return "warning"
    return "error"


def ticket_status(status: Optional[str], priority: Optional[str]) -> str:
    if status == "resolved":
        return "success"
    if status == "closed":
        return "info"
    if priority in ("urgent", "high"):
        return "error"
    return "warning"


def revenue_series(rows: Iterable[Any]) -> List[Dict[str, Any]]:
    """Rows with `amount` and `payment_date`, already sorted by date."""
    months: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for row in rows:
        bucket = months.setdefault(
            row.payment_date.strftime("%Y-%m"),
            {"month": month_label(row.payment_date), "revenue": 0.0, "users": 0},
        )
        bucket["revenue"] += float(row.amount)
        bucket["users"] += 1
    for bucket in months.values():
        bucket["revenue"] = round(bucket["revenue"], 2)
    return list(months.values())


def user_growth_series(rows: Iterable[Any]) -> List[Dict[str, Any]]:
    """Rows with `user_id` and `payment_date`, sorted by date."""
    months: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    seen = set()
    for row in rows:
        bucket = months.setdefault(
            row.payment_date.strftime("%Y-%m"),
            {"month": month_label(row.payment_date), "newUsers": 0, "totalUsers": 0},
        )
        if row.user_id not in seen:
            seen.add(row.user_id)
            bucket["newUsers"] += 1
        bucket["totalUsers"] = len(seen)
    return list(months.values())


def plan_distribution(rows: Iterable[Any]) -> List[Dict[str, Any]]:
    """Rows with `plan_name` and `plan_type`; colours cycle in first-seen order."""
    counts: "OrderedDict[str, int]" = OrderedDict()
    for row in rows:
        key = f"{row.plan_name} ({row.plan_type})"
        counts[key] = counts.get(key, 0) + 1
    return [
        {"name": name, "value": value, "color": PLAN_COLORS[index % len(PLAN_COLORS)]}
        for index, (name, value) in enumerate(counts.items())
    ]


def plan_statistics(rows: Iterable[Any]) -> List[Dict[str, Any]]:
    stats: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for row in rows:
        entry = stats.setdefault(
            f"{row.plan_name}-{row.plan_type}",
            {"name": row.plan_name, "type": row.plan_type, "users": 0, "revenue": 0.0, "status": "active"},
        )
        entry["users"] += 1
        entry["revenue"] = round(entry["revenue"] + float(row.amount), 2)
    return list(stats.values())


def _parse_date(value: Optional[str], field: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError(message=f"Invalid {field}", field=field)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _money(value: Optional[Decimal]) -> float:
    return round(float(value or 0), 2)


# ══════════════════════════════════════════════════════════════════════════
# Service
# ══════════════════════════════════════════════════════════════════════════

class AdminService:

    async def _count(self, db: AsyncSession, model, *conditions) -> int:
        result = await db.execute(select(func.count()).select_from(model).where(*conditions))
        return result.scalar_one() or 0

    # ── Activity feed ─────────────────────────────────────────────────────

    async def recent_activity(self, db: AsyncSession, limit: int = 10) -> List[Dict[str, Any]]:
        now = datetime.now(timezone.utc)
        events: List[Dict[str, Any]] = []

        result = await db.execute(select(User).order_by(User.created_at.desc()).limit(FEED_SIZE))
        for user in result.scalars().all():
            events.append({
                "id": f"user-{user.id}",
                "type": "user_registration",
                "message": f"New user registered: {user.email}",
                "status": "success",
                "priority": 1,
                "_at": user.created_at,
            })

        result = await db.execute(
            select(AuditProject)
            .where(AuditProject.status == "completed")
            .order_by(AuditProject.completed_at.desc().nulls_last())
            .limit(FEED_SIZE)
        )
        for audit in result.scalars().all():
            events.append({
                "id": f"audit-{audit.id}",
                "type": "audit_completed",
                "message": f"Audit completed for {audit.site_url} (Score: {audit.score})",
                "status": audit_status(audit.score),
                "priority": 2,
                "_at": audit.completed_at or audit.created_at,
            })

        result = await db.execute(select(Payment).order_by(Payment.payment_date.desc()).limit(FEED_SIZE))
        for payment in result.scalars().all():
            events.append({
                "id": f"payment-{payment.id}",
                "type": "payment_received",
                "message": f"Payment received: {payment.currency} {_money(payment.amount)} for {payment.plan_name}",
                "status": "success" if payment.payment_status == "completed" else "warning",
                "priority": 3,
                "_at": payment.payment_date,
            })

        result = await db.execute(
            select(SupportTicket).order_by(SupportTicket.created_at.desc()).limit(FEED_SIZE)
        )
        for ticket in result.scalars().all():
            events.append({
                "id": f"ticket-{ticket.id}",
                "type": "ticket_created",
                "message": f"New ticket: {ticket.subject} ({ticket.priority} priority)",
                "status": ticket_status(ticket.status, ticket.priority),
                "priority": 4,
                "_at": ticket.created_at,
            })

        events.sort(key=lambda e: e["_at"], reverse=True)
        feed = []
        for event in events[:limit]:
            moment = event.pop("_at")
            event["timestamp"] = relative_time(moment, now)
            feed.append(event)
        return feed

    # ── Counters ──────────────────────────────────────────────────────────

    async def overview_stats(self, db: AsyncSession) -> Dict[str, Any]:
        month_ago = datetime.now(timezone.utc) - timedelta(days=30)
        return {
            "totalUsers": await self._count(db, User),
            "activeUsers": await self._count(db, User, User.updated_at >= month_ago),
            "totalProjects": await self._count(db, AuditProject),
            "totalAudits": await self._count(db, AuditProject, AuditProject.status == "completed"),
            "criticalIssues": await self._count(db, AuditProject, AuditProject.score < 50),
            "resolvedIssues": await self._count(db, AuditProject, AuditProject.score >= 80),
            "totalScrapedPages": await self._count(db, ScrapedPage),
            "totalTickets": await self._count(db, SupportTicket),
            "openTickets": await self._count(db, SupportTicket, SupportTicket.status == "open"),
            "inProgressTickets": await self._count(db, SupportTicket, SupportTicket.status == "in_progress"),
            "resolvedTickets": await self._count(db, SupportTicket, SupportTicket.status == "resolved"),
            "highPriorityTickets": await self._count(
                db, SupportTicket, SupportTicket.priority.in_(["high", "urgent"])
            ),
        }

    async def payment_stats(
        self,
        db: AsyncSession,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        plan_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        start = _parse_date(start_date, "startDate")
        end = _parse_date(end_date, "endDate")
        filters = []
        if start:
            filters.append(Payment.payment_date >= start)
        if end:
            filters.append(Payment.payment_date <= end)
        if plan_id:
            filters.append(Payment.plan_id == parse_uuid(plan_id, "planId"))

        total = await self._count(db, Payment, *filters)
        completed = await self._count(db, Payment, Payment.payment_status == "completed", *filters)
        cancelled = await self._count(db, Payment, Payment.payment_status == "cancelled", *filters)

        now = datetime.now(timezone.utc)
        month_start = start or now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        year_start = start or now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
        upper = end or now

        async def revenue_since(since: datetime) -> float:
            result = await db.execute(
                select(func.coalesce(func.sum(Payment.amount), 0))
                .where(Payment.payment_status == "completed", *filters)
                .where(Payment.payment_date >= since, Payment.payment_date <= upper)
            )
            return _money(result.scalar_one())

        monthly = await revenue_since(month_start)
        annual = await revenue_since(year_start)
        return {
            "totalSubscriptions": total,
            "activeSubscriptions": completed,
            "cancelledSubscriptions": cancelled,
            "monthlyRevenue": monthly,
            "annualRevenue": annual,
            "averageRevenuePerUser": round(annual / completed, 2) if completed else 0,
        }

    # ── Charts ────────────────────────────────────────────────────────────

    async def chart_data(
        self,
        db: AsyncSession,
        chart_type: str = "revenue",
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        plan_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        if chart_type not in CHART_TYPES:
            raise ValidationError(message="Invalid chart type", field="chartType")

        now = datetime.now(timezone.utc)
        default_start = datetime.combine(
            date(now.year - 1, now.month, 1), datetime.min.time(), tzinfo=timezone.utc
        )
        start = _parse_date(start_date, "startDate") or default_start
        end = _parse_date(end_date, "endDate") or now

        stmt = (
            select(Payment.amount, Payment.payment_date, Payment.user_id, Payment.plan_name, Payment.plan_type)
            .where(Payment.payment_status == "completed")
            .where(Payment.payment_date >= start, Payment.payment_date <= end)
            .order_by(Payment.payment_date.asc())
        )
        if plan_id:
            stmt = stmt.where(Payment.plan_id == parse_uuid(plan_id, "planId"))
        result = await db.execute(stmt)
        rows: Sequence[Any] = result.all()

        if chart_type == "revenue":
            return revenue_series(rows)
        if chart_type == "users":
            return user_growth_series(rows)
        return plan_distribution(rows)

    # ── Ledger ────────────────────────────────────────────────────────────

    async def payment_history(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
    ) -> Dict[str, Any]:
        filters = []
        if status and status != "all":
            filters.append(Payment.payment_status == status)

        result = await db.execute(
            select(Payment, User)
            .outerjoin(User, User.id == Payment.user_id)
            .where(*filters)
            .order_by(Payment.payment_date.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        payments = []
        for payment, user in result.all():
            name = user.full_name if user is not None else ""
            payments.append({
                "id": str(payment.id),
                "user": (user.email if user is not None else None) or "Unknown",
                "userName": name or "Unknown User",
                "plan": payment.plan_name,
                "amount": _money(payment.amount),
                "currency": payment.currency or "INR",
                "status": payment.payment_status,
                "date": payment.payment_date.date().isoformat() if payment.payment_date else "N/A",
                "paymentMethod": payment.payment_method,
            })

        total = await self._count(db, Payment, *filters)
        result = await db.execute(
            select(Payment.plan_name, Payment.plan_type, Payment.amount)
            .where(Payment.payment_status == "completed")
        )
        return {
            "payments": payments,
            "planStatistics": plan_statistics(result.all()),
            "total": total,
            "page": page,
            "limit": limit,
        }


admin_service = AdminService()
