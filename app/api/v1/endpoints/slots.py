"""Appointment slot endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import DatabaseSession
from app.schemas.slots import Day, SlotCreate, SlotResponse, SlotUpdate
from app.services.slot_catalog import SlotCatalog

router = APIRouter()


@router.post(
    "/",
    response_model=SlotResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create slot",
)
async def create_slot(
    data: SlotCreate,
    db: DatabaseSession,
    merge: bool = Query(True, description="Merge into an existing slot for the same weekday"),
) -> SlotResponse:
    """
    Create a slot for a practitioner.

    Args:
        data: Slot definition
        db: Database session
        merge: When false, always create a parallel slot

    Returns:
        The created or merged slot
    """
    catalog = SlotCatalog(db)
    if merge:
        return await catalog.create_slot(data)
    return await catalog.create_slot_without_merge(data)


@router.get("/", response_model=list[SlotResponse], summary="List slots")
async def list_slots(
    db: DatabaseSession,
    practitioner_id: UUID | None = Query(None),
    day: Day | None = Query(None),
    include_deleted: bool = Query(False),
) -> list[SlotResponse]:
    """List slots, optionally filtered by practitioner and weekday."""
    return await SlotCatalog(db).list_slots(practitioner_id, day, include_deleted)


@router.get("/{slot_id}", response_model=SlotResponse, summary="Get slot")
async def get_slot(slot_id: UUID, db: DatabaseSession) -> SlotResponse:
    """Get a live slot with its schedules."""
    return await SlotCatalog(db).get_slot(slot_id)


@router.patch("/{slot_id}", response_model=SlotResponse, summary="Update slot")
async def update_slot(slot_id: UUID, data: SlotUpdate, db: DatabaseSession) -> SlotResponse:
    """Patch a slot. A ``schedules`` list replaces the whole schedule set."""
    return await SlotCatalog(db).update_slot(slot_id, data)


@router.delete("/{slot_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete slot")
async def delete_slot(slot_id: UUID, db: DatabaseSession) -> None:
    """Soft delete a slot."""
    await SlotCatalog(db).soft_delete_slot(slot_id)


@router.post("/{slot_id}/restore", response_model=SlotResponse, summary="Restore slot")
async def restore_slot(slot_id: UUID, db: DatabaseSession) -> SlotResponse:
    """Restore a soft-deleted slot."""
    return await SlotCatalog(db).restore_slot(slot_id)
