"""Affiliation endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import CurrentActor, DatabaseSession
from app.schemas.affiliations import (
    AffiliationCreate,
    AffiliationListResponse,
    AffiliationRespond,
    AffiliationResponse,
    AffiliationRevoke,
    AffiliationStatus,
    ScheduleUpdate,
)
from app.services.affiliation_service import AffiliationService

router = APIRouter()


@router.post(
    "",
    response_model=AffiliationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request an affiliation",
)
async def request_affiliation(
    data: AffiliationCreate,
    actor: CurrentActor,
    db: DatabaseSession,
) -> AffiliationResponse:
    """
    Open a pending affiliation between a doctor and a facility.

    Args:
        data: Doctor, facility and initial terms
        actor: Authenticated doctor or hospital admin
        db: Database session

    Returns:
        Created affiliation
    """
    return await AffiliationService(db).request_affiliation(actor, data)


@router.get(
    "",
    response_model=AffiliationListResponse,
    status_code=status.HTTP_200_OK,
    summary="List affiliations",
)
async def list_affiliations(
    actor: CurrentActor,
    db: DatabaseSession,
    status_filter: AffiliationStatus | None = Query(None, alias="status"),
) -> AffiliationListResponse:
    """List the caller's affiliations, optionally by status."""
    return await AffiliationService(db).list_affiliations(actor, status_filter)


@router.get(
    "/{affiliation_id}",
    response_model=AffiliationResponse,
    status_code=status.HTTP_200_OK,
    summary="Get affiliation",
)
async def get_affiliation(
    affiliation_id: UUID,
    actor: CurrentActor,
    db: DatabaseSession,
) -> AffiliationResponse:
    """Get one affiliation."""
    return await AffiliationService(db).get_affiliation(actor, affiliation_id)


@router.post(
    "/{affiliation_id}/respond",
    response_model=AffiliationResponse,
    status_code=status.HTTP_200_OK,
    summary="Accept or reject an affiliation",
)
async def respond_to_affiliation(
    affiliation_id: UUID,
    data: AffiliationRespond,
    actor: CurrentActor,
    db: DatabaseSession,
) -> AffiliationResponse:
    """Answer a pending affiliation as the invited party."""
    return await AffiliationService(db).respond(actor, affiliation_id, data.approve)


@router.post(
    "/{affiliation_id}/revoke",
    response_model=AffiliationResponse,
    status_code=status.HTTP_200_OK,
    summary="Revoke an affiliation",
)
async def revoke_affiliation(
    affiliation_id: UUID,
    data: AffiliationRevoke,
    actor: CurrentActor,
    db: DatabaseSession,
) -> AffiliationResponse:
    """End an approved affiliation."""
    return await AffiliationService(db).revoke(actor, affiliation_id, data.reason)


@router.patch(
    "/{affiliation_id}/schedule",
    response_model=AffiliationResponse,
    status_code=status.HTTP_200_OK,
    summary="Update affiliation schedule",
)
async def update_schedule(
    affiliation_id: UUID,
    data: ScheduleUpdate,
    actor: CurrentActor,
    db: DatabaseSession,
) -> AffiliationResponse:
    """
    Replace the weekly pattern and/or date overrides.

    Args:
        affiliation_id: Affiliation ID
        data: Fields to replace; omitted fields are left as they are
        actor: Doctor or hospital admin of the affiliation
        db: Database session

    Returns:
        Updated affiliation
    """
    return await AffiliationService(db).update_schedule(actor, affiliation_id, data)
