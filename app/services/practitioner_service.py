"""Practitioner directory service."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictException, NotFoundException
from app.models.practitioners import practitioners
from app.schemas.practitioners import PractitionerCreate, PractitionerResponse
from app.services.slot_catalog import SlotCatalog

logger = structlog.get_logger(__name__)


class PractitionerService:
    """Service for practitioner lookups and onboarding."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def get_practitioner(self, practitioner_id: UUID, lock: bool = False) -> dict[str, Any]:
        """
        Get a live practitioner row.

        Args:
            practitioner_id: Practitioner ID
            lock: Take a row lock until the transaction ends

        Raises:
            NotFoundException: If practitioner not found or soft-deleted
        """
        stmt = select(practitioners).where(
            and_(
                practitioners.c.id == practitioner_id,
                practitioners.c.deleted_at.is_(None),
            )
        )
        if lock:
            stmt = stmt.with_for_update()

        result = await self.db.execute(stmt)
        practitioner = result.mappings().first()
        if not practitioner:
            raise NotFoundException("Practitioner not found")
        return dict(practitioner)

    async def get_practitioner_detail(self, practitioner_id: UUID) -> PractitionerResponse:
        """Get a practitioner together with its live slots."""
        practitioner = await self.get_practitioner(practitioner_id)
        slots = await SlotCatalog(self.db).list_slots(practitioner_id=practitioner_id)
        return PractitionerResponse.model_validate({**practitioner, "slots": slots})

    async def create_practitioner(self, data: PractitionerCreate) -> PractitionerResponse:
        """
        Onboard a practitioner with their weekly slots in one transaction.

        Slots for a repeated weekday are merged into the first one.

        Args:
            data: Practitioner data and slot definitions

        Returns:
            Created practitioner with slots
        """
        stmt = (
            practitioners.insert()
            .values(
                name=data.name,
                last_name=data.last_name,
                email=data.email.lower() if data.email else None,
                phone=data.phone,
                default_duration=data.default_duration,
            )
            .returning(practitioners.c.id)
        )

        try:
            result = await self.db.execute(stmt)
            practitioner_id = result.scalar_one()

            catalog = SlotCatalog(self.db)
            for slot in data.slots:
                await catalog.add_slot(practitioner_id, slot, merge=True)

            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictException("A practitioner with this email already exists") from e
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "practitioner_created",
            practitioner_id=str(practitioner_id),
            slots=len(data.slots),
        )
        return await self.get_practitioner_detail(practitioner_id)
