"""Patient lookup for reception-desk registrations."""

from uuid import UUID

import structlog
from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.patients import patients
from app.schemas.appointments import WalkInPatient

logger = structlog.get_logger(__name__)


class PatientService:
    """Service for patient records created or matched at the front desk."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def get_by_phone(self, phone: str) -> UUID | None:
        result = await self.db.execute(select(patients.c.id).where(patients.c.phone == phone))
        return result.scalar_one_or_none()

    async def find_or_create_by_phone(self, data: WalkInPatient) -> tuple[UUID, bool]:
        """
        Match a patient by phone number, or create a walk-in record.

        Two desks registering the same new phone at once both end up with
        the one record that won the insert.

        Returns:
            Patient ID and whether it was created by this call
        """
        existing = await self.get_by_phone(data.phone)
        if existing is not None:
            return existing, False

        values = {
            "phone": data.phone,
            "first_name": data.first_name,
            "last_name": data.last_name,
            "email": data.email,
            "gender": data.gender,
            "age": data.age,
            "is_walk_in_created": True,
        }
        try:
            result = await self.db.execute(insert(patients).values(**values).returning(patients.c.id))
            patient_id = result.scalar_one()
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            patient_id = await self.get_by_phone(data.phone)
            if patient_id is None:
                raise
            return patient_id, False

        logger.info("walk_in_patient_created", patient_id=str(patient_id))
        return patient_id, True
