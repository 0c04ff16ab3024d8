"""
Resource directory.

Read model of professionals, rooms and agenda blocks, as maintained by the
clinic's admin catalogs. The scheduling engine never writes here; the
in-process working-hours resolver and the compatibility validator read it.

In production this is backed by the catalog tables; this in-memory version
is what the API server and the tests run against.
"""

from datetime import datetime
from itertools import count
from typing import Dict, List, Optional

from loguru import logger

from clinic_agenda.models.resources import (
    BlockKind,
    Professional,
    ResourceKind,
    ResourceRef,
    Room,
    ScheduleBlock,
)
from clinic_agenda.services.intervals import overlaps


class ResourceDirectory:
    """In-memory catalog of schedulable resources."""

    def __init__(self):
        self._professionals: Dict[int, Professional] = {}
        self._rooms: Dict[int, Room] = {}
        self._blocks: Dict[int, ScheduleBlock] = {}
        self._block_ids = count(1)

    # Public accessors for testing
    @property
    def professionals(self) -> Dict[int, Professional]:
        return self._professionals

    @property
    def rooms(self) -> Dict[int, Room]:
        return self._rooms

    @property
    def blocks(self) -> Dict[int, ScheduleBlock]:
        return self._blocks

    def clear(self) -> None:
        self._professionals.clear()
        self._rooms.clear()
        self._blocks.clear()
        self._block_ids = count(1)

    def add_professional(self, professional: Professional) -> Professional:
        self._professionals[professional.id] = professional
        return professional

    def add_room(self, room: Room) -> Room:
        self._rooms[room.id] = room
        return room

    def add_block(
        self,
        start_at: datetime,
        end_at: datetime,
        kind: BlockKind = BlockKind.OTHER,
        reason: Optional[str] = None,
        professional_id: Optional[int] = None,
        room_id: Optional[int] = None,
    ) -> ScheduleBlock:
        block = ScheduleBlock(
            id=next(self._block_ids),
            start_at=start_at,
            end_at=end_at,
            kind=kind,
            reason=reason,
            professional_id=professional_id,
            room_id=room_id,
        )
        self._blocks[block.id] = block
        return block

    def get_professional(self, professional_id: int) -> Optional[Professional]:
        return self._professionals.get(professional_id)

    def get_room(self, room_id: int) -> Optional[Room]:
        return self._rooms.get(room_id)

    def get(self, resource: ResourceRef) -> Optional[Professional | Room]:
        if resource.kind == ResourceKind.PROFESSIONAL:
            return self.get_professional(resource.id)
        return self.get_room(resource.id)

    def blocks_for(
        self, resource: ResourceRef, start: datetime, end: datetime
    ) -> List[ScheduleBlock]:
        """Active blocks touching ``[start, end)`` for a resource, earliest first."""
        found = [
            block
            for block in self._blocks.values()
            if block.applies_to(resource)
            and overlaps(block.start_at, block.end_at, start, end)
        ]
        return sorted(found, key=lambda b: (b.start_at, b.id))

    def professional_name(self, professional_id: int) -> Optional[str]:
        professional = self._professionals.get(professional_id)
        return professional.name if professional else None

    def room_name(self, room_id: Optional[int]) -> Optional[str]:
        if room_id is None:
            return None
        room = self._rooms.get(room_id)
        return room.name if room else None


def seed_sample_resources(directory: ResourceDirectory) -> None:
    """Load the demo clinic used by the API server."""
    weekday_hours = [{"inicio": "08:00", "fin": "12:00"}, {"inicio": "13:00", "fin": "18:00"}]

    directory.add_professional(
        Professional(
            id=1,
            name="Dra. Ana Benítez",
            specialties=["Odontología General"],
            schedule={
                day: weekday_hours
                for day in ("lunes", "martes", "miercoles", "jueves", "viernes")
            },
        )
    )
    directory.add_professional(
        Professional(
            id=2,
            name="Dr. Carlos Giménez",
            specialties=["Endodoncia", "Odontología General"],
            schedule={"dow": {str(d): [["09:00", "13:00"]] for d in range(1, 6)}},
        )
    )
    directory.add_professional(
        Professional(id=3, name="Dra. Laura Ortiz", specialties=["Ortodoncia"])
    )
    directory.add_room(Room(id=1, name="Consultorio 1"))
    directory.add_room(Room(id=2, name="Consultorio 2"))
    directory.add_room(Room(id=3, name="Sala de Rayos X", active=False))

    logger.info(
        f"Seeded directory with {len(directory.professionals)} professionals "
        f"and {len(directory.rooms)} rooms"
    )
