"""Appointment category endpoints."""

from uuid import UUID

from fastapi import APIRouter, status

from app.dependencies import DatabaseSession
from app.schemas.categories import (
    CategoryAvailabilityCreate,
    CategoryAvailabilityResponse,
    CategoryCreate,
    CategoryResponse,
)
from app.services.category_service import CategoryService

router = APIRouter()


@router.post(
    "/",
    response_model=CategoryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create category",
)
async def create_category(data: CategoryCreate, db: DatabaseSession) -> CategoryResponse:
    """Create an appointment category."""
    return await CategoryService(db).create_category(data)


@router.get(
    "/{category_id}/availability",
    response_model=list[CategoryAvailabilityResponse],
    summary="List category windows",
)
async def get_category_availability(
    category_id: UUID, db: DatabaseSession
) -> list[CategoryAvailabilityResponse]:
    """List the weekday windows of a category. Empty means unrestricted."""
    return await CategoryService(db).get_category_availability(category_id)


@router.post(
    "/{category_id}/availability",
    response_model=CategoryAvailabilityResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add category window",
)
async def add_category_availability(
    category_id: UUID,
    data: CategoryAvailabilityCreate,
    db: DatabaseSession,
) -> CategoryAvailabilityResponse:
    """
    Add a weekday window to a category.

    Args:
        category_id: Category ID
        data: Weekday and time range
        db: Database session

    Returns:
        Created window
    """
    return await CategoryService(db).add_availability(category_id, data)
