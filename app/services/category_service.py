"""Appointment category service."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BadRequestException, ConflictException, NotFoundException
from app.core.timeutils import parse_hour
from app.models.categories import appointment_categories, category_availabilities
from app.schemas.categories import (
    CategoryAvailabilityCreate,
    CategoryAvailabilityResponse,
    CategoryCreate,
    CategoryResponse,
)

logger = structlog.get_logger(__name__)


class CategoryService:
    """Service for appointment categories and their weekday windows."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def get_category(self, category_id: UUID) -> dict[str, Any]:
        """
        Get a live category.

        Raises:
            NotFoundException: If category not found
        """
        stmt = select(appointment_categories).where(
            and_(
                appointment_categories.c.id == category_id,
                appointment_categories.c.deleted_at.is_(None),
            )
        )
        result = await self.db.execute(stmt)
        category = result.mappings().first()
        if not category:
            raise NotFoundException("Appointment category not found")
        return dict(category)

    async def find_or_create_category(self, data: CategoryCreate) -> dict[str, Any]:
        """Reuse the live category with the same name and color, or create it."""
        color_clause = (
            appointment_categories.c.color == data.color
            if data.color
            else appointment_categories.c.color.is_(None)
        )
        stmt = (
            select(appointment_categories)
            .where(
                and_(
                    appointment_categories.c.name == data.name,
                    color_clause,
                    appointment_categories.c.deleted_at.is_(None),
                )
            )
            .limit(1)
        )
        result = await self.db.execute(stmt)
        category = result.mappings().first()
        if category:
            return dict(category)

        result = await self.db.execute(
            appointment_categories.insert()
            .values(name=data.name, color=data.color)
            .returning(appointment_categories)
        )
        category = dict(result.mappings().one())
        logger.info("category_created", category_id=str(category["id"]), name=data.name)
        return category

    async def create_category(self, data: CategoryCreate) -> CategoryResponse:
        """Create a category, reusing an identical live one."""
        category = await self.find_or_create_category(data)
        await self.db.commit()
        return CategoryResponse.model_validate(category)

    async def get_category_availability(
        self, category_id: UUID
    ) -> list[CategoryAvailabilityResponse]:
        """
        List the weekday windows configured for a category.

        An empty list means the category is unrestricted.

        Raises:
            NotFoundException: If category not found
        """
        await self.get_category(category_id)

        stmt = (
            select(category_availabilities)
            .where(
                and_(
                    category_availabilities.c.category_id == category_id,
                    category_availabilities.c.deleted_at.is_(None),
                )
            )
            .order_by(category_availabilities.c.day, category_availabilities.c.start_time)
        )
        result = await self.db.execute(stmt)
        return [CategoryAvailabilityResponse.model_validate(dict(r)) for r in result.mappings()]

    async def add_availability(
        self, category_id: UUID, data: CategoryAvailabilityCreate
    ) -> CategoryAvailabilityResponse:
        """
        Add a weekday window to a category.

        Raises:
            NotFoundException: If category not found
            BadRequestException: If start_time is not before end_time
            ConflictException: If the weekday already has a window
        """
        await self.get_category(category_id)

        if parse_hour(data.start_time) >= parse_hour(data.end_time):
            raise BadRequestException("start_time must be before end_time")

        stmt = select(category_availabilities.c.id).where(
            and_(
                category_availabilities.c.category_id == category_id,
                category_availabilities.c.day == data.day.value,
                category_availabilities.c.deleted_at.is_(None),
            )
        )
        result = await self.db.execute(stmt)
        if result.first() is not None:
            raise ConflictException(
                f"Category already has an availability window for {data.day.value}"
            )

        result = await self.db.execute(
            category_availabilities.insert()
            .values(
                category_id=category_id,
                day=data.day.value,
                start_time=data.start_time,
                end_time=data.end_time,
            )
            .returning(category_availabilities)
        )
        availability = dict(result.mappings().one())
        await self.db.commit()

        logger.info(
            "category_availability_added",
            category_id=str(category_id),
            day=data.day.value,
        )
        return CategoryAvailabilityResponse.model_validate(availability)
