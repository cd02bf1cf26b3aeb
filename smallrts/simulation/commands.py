"""Command types.

Commands are the ONLY way players affect the simulation. On the host they
are applied as soon as they arrive; on a follower they are forwarded to the
host and only become visible through a later snapshot.

The acting player is never part of a command: the host knows it from the
channel a command arrived on (or from its own player id for local input).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class CommandType(str, Enum):
    """All possible player actions. Values are the wire tags."""
    MOVE = "move"
    STOP = "stop"


@dataclass(frozen=True, slots=True)
class Command:
    """A single player action.

    Commands are immutable and comparable, two Commands with the same fields
    are equal.

    Attributes:
        command_type: What action to perform.
        target_x: Target x position in pixels (MOVE only).
        target_y: Target y position in pixels (MOVE only).
        unit_ids: Which units the command targets. An empty tuple means
            every unit the acting player owns.
    """
    command_type: CommandType
    target_x: int = 0
    target_y: int = 0
    unit_ids: tuple[int, ...] = ()

    @classmethod
    def move(cls, x: int, y: int, unit_ids: tuple[int, ...] = ()) -> Command:
        return cls(CommandType.MOVE, target_x=x, target_y=y, unit_ids=tuple(unit_ids))

    @classmethod
    def stop(cls, unit_ids: tuple[int, ...] = ()) -> Command:
        return cls(CommandType.STOP, unit_ids=tuple(unit_ids))

    def targets(self, unit_id: int) -> bool:
        """Whether this command names the given unit."""
        return not self.unit_ids or unit_id in self.unit_ids
