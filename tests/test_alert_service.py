"""
Web Audit API — Alert Service Tests
=====================================

What:  Tests visibility lookups, counters, admin CRUD validation and the
       dashboard statistics with a mocked session.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from webaudit.exceptions import NotFoundError, ValidationError
from webaudit.models.alert import AdminAlert
from webaudit.schemas.alert import AlertFields
from webaudit.services.alert_service import AlertService


def _alert(**overrides) -> AdminAlert:
    values = dict(
        id=uuid4(), title="Maintenance", message="Tonight at 2am",
        alert_type="maintenance", severity="medium", status="active",
        is_global=True, target_audience="all",
        start_date=datetime.now(timezone.utc) - timedelta(hours=1), end_date=None,
        priority=1, action_url=None, action_text=None, dismissible=True,
        auto_expire=False, view_count=0, click_count=0,
        created_at=datetime.now(timezone.utc), updated_at=None,
    )
    values.update(overrides)
    return AdminAlert(**values)


class TestUserAlerts:

    def setup_method(self):
        self.service = AlertService()

    @pytest.mark.asyncio
    async def test_visible_alerts_bumps_views(self, mock_db_session, make_result):
        alerts = [_alert(), _alert(priority=9)]
        mock_db_session.execute.side_effect = [make_result(items=alerts), make_result()]

        found = await self.service.visible_alerts(mock_db_session, "Growth")

        assert found == alerts
        assert mock_db_session.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_no_alerts_no_update(self, mock_db_session, make_result):
        mock_db_session.execute.return_value = make_result(items=[])

        assert await self.service.visible_alerts(mock_db_session, None) == []
        assert mock_db_session.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_click_requires_id(self, mock_db_session):
        with pytest.raises(ValidationError, match="Alert ID is required"):
            await self.service.record_click(mock_db_session, "  ")

    @pytest.mark.asyncio
    async def test_click_unknown_alert(self, mock_db_session, make_result):
        mock_db_session.execute.return_value = make_result(rowcount=0)
        with pytest.raises(NotFoundError, match="Alert not found"):
            await self.service.record_click(mock_db_session, str(uuid4()))

    @pytest.mark.asyncio
    async def test_click_bad_id(self, mock_db_session):
        with pytest.raises(ValidationError, match="Invalid alertId"):
            await self.service.record_click(mock_db_session, "not-a-uuid")


class TestAdminAlerts:

    def setup_method(self):
        self.service = AlertService()

    @pytest.mark.asyncio
    async def test_create_requires_title_and_message(self, mock_db_session):
        with pytest.raises(ValidationError, match="Title and message are required"):
            await self.service.create_alert(mock_db_session, AlertFields(title="Hi", message=" "))

    @pytest.mark.asyncio
    async def test_create_applies_defaults(self, mock_db_session):
        alert = await self.service.create_alert(
            mock_db_session, AlertFields(title="Sale", message="50% off", severity="high", priority=8)
        )

        assert alert.alert_type == "info"
        assert alert.status == "active"
        assert alert.target_audience == "all"
        assert alert.severity == "high"
        assert alert.priority == 8
        assert alert.start_date is not None
        mock_db_session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_rejects_blank_title(self, mock_db_session, make_result):
        mock_db_session.execute.return_value = make_result(scalar=_alert())
        with pytest.raises(ValidationError, match="Title cannot be empty"):
            await self.service.update_alert(mock_db_session, str(uuid4()), AlertFields(title=""))

    @pytest.mark.asyncio
    async def test_update_is_partial(self, mock_db_session, make_result):
        alert = _alert(end_date=datetime.now(timezone.utc))
        mock_db_session.execute.return_value = make_result(scalar=alert)

        updated = await self.service.update_alert(
            mock_db_session, str(alert.id), AlertFields(status="inactive", end_date=None)
        )

        assert updated.status == "inactive"
        assert updated.end_date is None
        assert updated.title == "Maintenance"
        assert updated.updated_at is not None

    @pytest.mark.asyncio
    async def test_update_not_found(self, mock_db_session, make_result):
        mock_db_session.execute.return_value = make_result(scalar=None)
        with pytest.raises(NotFoundError):
            await self.service.update_alert(mock_db_session, str(uuid4()), AlertFields(status="draft"))

    @pytest.mark.asyncio
    async def test_delete_not_found(self, mock_db_session, make_result):
        mock_db_session.execute.return_value = make_result(rowcount=0)
        with pytest.raises(NotFoundError):
            await self.service.delete_alert(mock_db_session, str(uuid4()))

    @pytest.mark.asyncio
    async def test_delete_requires_id(self, mock_db_session):
        with pytest.raises(ValidationError, match="Alert ID is required"):
            await self.service.delete_alert(mock_db_session, None)

    def test_invalid_status_rejected_by_schema(self):
        with pytest.raises(ValueError, match="Invalid status"):
            AlertFields(status="archived")

    @pytest.mark.asyncio
    async def test_stats(self, mock_db_session, make_result):
        alerts = [
            _alert(severity="critical", priority=9, alert_type="error"),
            _alert(severity="high", priority=8),
            _alert(status="inactive", severity="critical", priority=10),
            _alert(status="draft"),
            _alert(),
            _alert(),
        ]
        mock_db_session.execute.return_value = make_result(items=alerts)

        stats = await self.service.stats(mock_db_session)

        assert stats["total"] == 6
        assert stats["active"] == 4
        assert stats["inactive"] == 1
        assert stats["draft"] == 1
        assert stats["critical"] == 1
        assert stats["high_priority"] == 2
        assert stats["alerts_by_type"] == {"error": 1, "maintenance": 3}
        assert stats["alerts_by_severity"] == {"critical": 1, "high": 1, "medium": 2}
        assert stats["recent_alerts"] == alerts[:5]
