"""
Web Audit API — Credit Package Service
========================================

What:  Admin CRUD for image-scan credit bundles.
Why:   Pricing for credits changes more often than plans; it lives in the
       database so it can be edited from the admin panel.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from webaudit.exceptions import NotFoundError, ValidationError
from webaudit.models.credit_package import CreditPackage
from webaudit.schemas.plan import CreditPackageFields
from webaudit.validators import parse_uuid

logger = logging.getLogger(__name__)


def _validate_credits(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(
            message="Credits must be a positive integer",
            field="credits",
            error_code="invalid_credits",
        )
    return value


def _validate_price(value: Any) -> Decimal:
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        price = Decimal(0)
    if isinstance(value, bool) or not price.is_finite() or price <= 0:
        raise ValidationError(
            message="Price must be a positive number",
            field="price",
            error_code="invalid_price",
        )
    return price


def _validate_label(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            message="Label is required",
            field="label",
            error_code="invalid_label",
        )
    return value.strip()


class CreditPackageService:

    async def list_active(self, db: AsyncSession) -> List[CreditPackage]:
        result = await db.execute(
            select(CreditPackage)
            .where(CreditPackage.is_active.is_(True))
            .order_by(CreditPackage.sort_order.asc())
        )
        return list(result.scalars().all())

    async def get_package(self, db: AsyncSession, package_id: Any) -> CreditPackage:
        pid = parse_uuid(package_id, "id", message="Credit package with the given ID does not exist")
        result = await db.execute(select(CreditPackage).where(CreditPackage.id == pid))
        package = result.scalar_one_or_none()
        if package is None:
            raise NotFoundError(
                resource="package",
                resource_id=str(pid),
                message="Credit package with the given ID does not exist",
            )
        return package

    async def _ensure_unique_credits(self, db: AsyncSession, credits: int, exclude_id=None) -> None:
        stmt = select(CreditPackage.id).where(CreditPackage.credits == credits)
        if exclude_id is not None:
            stmt = stmt.where(CreditPackage.id != exclude_id)
        result = await db.execute(stmt)
        if result.scalars().first() is not None:
            raise ValidationError(
                message=f"A package with {credits} credits already exists",
                field="credits",
                error_code="duplicate_credits",
            )

    async def create_package(self, db: AsyncSession, fields: CreditPackageFields) -> CreditPackage:
        credits = _validate_credits(fields.credits)
        price = _validate_price(fields.price)
        label = _validate_label(fields.label)
        await self._ensure_unique_credits(db, credits)

        now = datetime.now(timezone.utc)
        package = CreditPackage(
            credits=credits,
            price=price,
            label=label,
            sort_order=fields.sort_order or 0,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        db.add(package)
        await db.flush()
        logger.info("Credit package created: %d credits for %s", credits, price)
        return package

    async def update_package(
        self, db: AsyncSession, package_id: Any, fields: CreditPackageFields
    ) -> CreditPackage:
        supplied = fields.model_dump(exclude_unset=True)
        credits = _validate_credits(supplied["credits"]) if "credits" in supplied else None
        price = _validate_price(supplied["price"]) if "price" in supplied else None
        if "label" in supplied:
            if not isinstance(supplied["label"], str) or not supplied["label"].strip():
                raise ValidationError(
                    message="Label cannot be empty",
                    field="label",
                    error_code="invalid_label",
                )

        package = await self.get_package(db, package_id)
        if credits is not None:
            await self._ensure_unique_credits(db, credits, exclude_id=package.id)
            package.credits = credits
        if price is not None:
            package.price = price
        if "label" in supplied:
            package.label = supplied["label"].strip()
        if supplied.get("is_active") is not None:
            package.is_active = bool(supplied["is_active"])
        if supplied.get("sort_order") is not None:
            package.sort_order = int(supplied["sort_order"])
        package.updated_at = datetime.now(timezone.utc)

        await db.flush()
        return package

    async def delete_package(self, db: AsyncSession, package_id: Any) -> None:
        package = await self.get_package(db, package_id)
        package.is_active = False
        package.updated_at = datetime.now(timezone.utc)
        await db.flush()
        logger.info("Credit package %s deactivated", package.id)


credit_package_service = CreditPackageService()
