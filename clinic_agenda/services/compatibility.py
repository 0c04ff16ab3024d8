"""
Compatibility Validator.

Checks that the chosen professional can attend the appointment type and
that the room can host it (exists, active, not blocked). Invoked by the
coordinator once the slot is known to be free, right before commit.
"""

from datetime import datetime
from typing import List, Optional

from clinic_agenda.config import get_required_specialties
from clinic_agenda.errors import IncompatibleResourceError, ResourceUnavailableError
from clinic_agenda.models.resources import ResourceKind, ResourceRef
from clinic_agenda.services.directory import ResourceDirectory


def check_specialty(appointment_type: str, specialties: List[str]) -> None:
    """
    Raise unless one of ``specialties`` may attend ``appointment_type``.

    Appointment types with no required specialty accept any professional.
    """
    required = get_required_specialties(appointment_type)
    if not required:
        return

    details = {
        "appointment_type": appointment_type,
        "required_specialties": required,
        "professional_specialties": list(specialties),
    }
    if not specialties:
        raise IncompatibleResourceError(
            f"Professional has no registered specialties; requires one of: {', '.join(required)}",
            code="PROFESSIONAL_HAS_NO_SPECIALTIES",
            details=details,
        )
    if not any(specialty in specialties for specialty in required):
        raise IncompatibleResourceError(
            f"Professional lacks the specialty required for {appointment_type}: "
            f"{' or '.join(required)}",
            code="INCOMPATIBLE_SPECIALTY",
            details=details,
        )


class CompatibilityValidator:
    """Resource eligibility checks backed by the resource directory."""

    def __init__(self, directory: ResourceDirectory):
        self._directory = directory

    async def validate(
        self,
        appointment_type: str,
        professional_id: int,
        room_id: Optional[int],
        start_at: datetime,
        end_at: datetime,
    ) -> None:
        professional = self._directory.get_professional(professional_id)
        if professional is None:
            raise ResourceUnavailableError(
                f"Professional {professional_id} does not exist",
                code="RESOURCE_NOT_FOUND",
                details={"resource_kind": "professional", "resource_id": professional_id},
            )
        if not professional.active:
            raise ResourceUnavailableError(
                f"Professional '{professional.name}' is inactive",
                code="RESOURCE_INACTIVE",
                details={"resource_kind": "professional", "resource_id": professional_id},
            )

        check_specialty(appointment_type, professional.specialties)

        resources = [ResourceRef(kind=ResourceKind.PROFESSIONAL, id=professional_id)]
        if room_id is not None:
            room = self._directory.get_room(room_id)
            if room is None:
                raise ResourceUnavailableError(
                    f"Room {room_id} does not exist",
                    code="RESOURCE_NOT_FOUND",
                    details={"resource_kind": "room", "resource_id": room_id},
                )
            if not room.active:
                raise ResourceUnavailableError(
                    f"Room '{room.name}' is inactive and cannot take appointments",
                    code="RESOURCE_INACTIVE",
                    details={"resource_kind": "room", "resource_id": room_id, "room_name": room.name},
                )
            resources.append(ResourceRef(kind=ResourceKind.ROOM, id=room_id))

        for resource in resources:
            blocks = self._directory.blocks_for(resource, start_at, end_at)
            if blocks:
                block = blocks[0]
                suffix = f": {block.reason}" if block.reason else ""
                raise IncompatibleResourceError(
                    f"{resource.kind.value.capitalize()} is blocked at the requested time{suffix}",
                    code="RESOURCE_BLOCKED",
                    details={
                        "resource_kind": resource.kind.value,
                        "resource_id": resource.id,
                        "block_id": block.id,
                        "block_kind": block.kind.value,
                        "reason": block.reason,
                        "start": block.start_at.isoformat(),
                        "end": block.end_at.isoformat(),
                    },
                )
