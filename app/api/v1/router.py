"""API v1 router configuration."""

from fastapi import APIRouter

from app.api.v1.endpoints import affiliations, appointments, health, queue

api_router = APIRouter()

# Include routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(affiliations.router, prefix="/affiliations", tags=["Affiliations"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["Appointments"])
api_router.include_router(queue.router, prefix="/queue", tags=["Queue"])
