"""Database models."""

from app.models.affiliations import affiliations
from app.models.appointments import appointments
from app.models.base import metadata
from app.models.patients import patients
from app.models.token_counters import token_counters

__all__ = [
    "affiliations",
    "appointments",
    "metadata",
    "patients",
    "token_counters",
]
