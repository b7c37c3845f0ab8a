"""Actor context supplied by the identity provider."""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class ActorRole(str, Enum):
    """Roles recognised by the queue core."""

    PATIENT = "patient"
    DOCTOR = "doctor"
    HOSPITAL_ADMIN = "hospital_admin"
    STAFF = "staff"


FACILITY_ROLES = frozenset({ActorRole.HOSPITAL_ADMIN, ActorRole.STAFF})


class ActorContext(BaseModel):
    """Authenticated caller, passed explicitly into every core operation."""

    actor_id: UUID
    role: ActorRole
    facility_id: UUID | None = None

    model_config = {"frozen": True}

    @property
    def is_doctor(self) -> bool:
        """Check if the caller is a doctor."""
        return self.role == ActorRole.DOCTOR

    def is_facility_member(self, facility_id: UUID) -> bool:
        """Check if the caller is staff or an admin of the given facility."""
        return self.role in FACILITY_ROLES and self.facility_id == facility_id

    def is_facility_admin(self, facility_id: UUID) -> bool:
        """Check if the caller administers the given facility."""
        return self.role == ActorRole.HOSPITAL_ADMIN and self.facility_id == facility_id
