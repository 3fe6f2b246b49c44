"""Patient directory service."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundException
from app.models.patients import patients
from app.schemas.patients import PatientCreate

logger = structlog.get_logger(__name__)


class PatientService:
    """Service for patient lookups and deduplicated creation."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def get_patient(self, patient_id: UUID) -> dict[str, Any]:
        """
        Get patient by ID.

        Raises:
            NotFoundException: If patient not found
        """
        result = await self.db.execute(select(patients).where(patients.c.id == patient_id))
        patient = result.mappings().first()
        if not patient:
            raise NotFoundException("Patient not found")
        return dict(patient)

    async def _find_existing(self, data: PatientCreate) -> dict[str, Any] | None:
        conditions = [patients.c.dni == data.dni]
        if data.email:
            conditions.append(patients.c.email == data.email)

        stmt = select(patients).where(or_(*conditions)).order_by(patients.c.created_at).limit(1)
        result = await self.db.execute(stmt)
        patient = result.mappings().first()
        return dict(patient) if patient else None

    async def find_or_create_patient(self, data: PatientCreate) -> dict[str, Any]:
        """
        Return the patient matching the DNI or email, creating one if none exists.

        Runs inside the caller's transaction and does not commit.

        Args:
            data: Inline patient data

        Returns:
            Patient row
        """
        existing = await self._find_existing(data)
        if existing:
            logger.info("patient_reused", patient_id=str(existing["id"]))
            return existing

        stmt = (
            patients.insert()
            .values(
                dni=data.dni,
                name=data.name,
                last_name=data.last_name,
                email=data.email,
                phone=data.phone,
            )
            .returning(patients)
        )
        try:
            async with self.db.begin_nested():
                result = await self.db.execute(stmt)
                patient = dict(result.mappings().one())
        except IntegrityError:
            # Created concurrently by another booking
            existing = await self._find_existing(data)
            if existing is None:
                raise
            return existing

        logger.info("patient_created", patient_id=str(patient["id"]))
        return patient
