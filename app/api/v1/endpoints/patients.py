"""Patient endpoints."""

from uuid import UUID

from fastapi import APIRouter, status

from app.dependencies import DatabaseSession
from app.schemas.patients import PatientCreate, PatientResponse
from app.services.patient_service import PatientService

router = APIRouter()


@router.post(
    "/",
    response_model=PatientResponse,
    status_code=status.HTTP_200_OK,
    summary="Find or create patient",
)
async def find_or_create_patient(data: PatientCreate, db: DatabaseSession) -> PatientResponse:
    """Return the patient with the same DNI or email, creating it if needed."""
    patient = await PatientService(db).find_or_create_patient(data)
    await db.commit()
    return PatientResponse.model_validate(patient)


@router.get("/{patient_id}", response_model=PatientResponse, summary="Get patient")
async def get_patient(patient_id: UUID, db: DatabaseSession) -> PatientResponse:
    """Get patient by ID."""
    return PatientResponse.model_validate(await PatientService(db).get_patient(patient_id))
