"""Game state and entity definitions.

GameState holds the units and players of one running instance. On the host
it is the canonical state; on a follower it is a replica that gets replaced
wholesale by every snapshot.

RULES:
- Unit ids are assigned only by the host, monotonically from 1.
- Units are kept in a dict keyed by unit_id; insertion order is creation
  order on the host and snapshot order on a follower.
- `selected` is local UI state. It is never serialized.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from smallrts.config import PLAYER_COLORS, UNIT_HP, UNIT_SPEED
from smallrts.networking.protocol import UnitDTO


def player_color(player_id: str) -> tuple[int, int, int]:
    """Deterministic display colour: sum of character codes into the palette."""
    return PLAYER_COLORS[sum(ord(c) for c in player_id) % len(PLAYER_COLORS)]


@dataclass(slots=True)
class Unit:
    """A simulation entity. Positions are continuous pixel coordinates."""
    unit_id: int
    owner: str
    x: float
    y: float
    target_x: float
    target_y: float
    hp: int = UNIT_HP
    max_hp: int = UNIT_HP
    speed: float = UNIT_SPEED
    selected: bool = False

    @property
    def is_moving(self) -> bool:
        return self.x != self.target_x or self.y != self.target_y

    def move_to(self, x: float, y: float) -> None:
        self.target_x = x
        self.target_y = y

    def step(self) -> None:
        """Advance one tick toward the target, snapping when within one step."""
        dx = self.target_x - self.x
        dy = self.target_y - self.y
        dist = math.hypot(dx, dy)
        if dist > self.speed:
            self.x += dx / dist * self.speed
            self.y += dy / dist * self.speed
        else:
            self.x = self.target_x
            self.y = self.target_y

    def to_dto(self) -> UnitDTO:
        return UnitDTO(
            id=self.unit_id,
            x=round(self.x),
            y=round(self.y),
            tx=round(self.target_x),
            ty=round(self.target_y),
            hp=self.hp,
            owner=self.owner,
        )

    @classmethod
    def from_dto(cls, dto: UnitDTO) -> Unit:
        return cls(
            unit_id=dto.id,
            owner=dto.owner,
            x=dto.x,
            y=dto.y,
            target_x=dto.tx,
            target_y=dto.ty,
            hp=dto.hp,
        )


@dataclass(slots=True)
class Player:
    player_id: str
    color: tuple[int, int, int]

    @classmethod
    def create(cls, player_id: str) -> Player:
        return cls(player_id, player_color(player_id))


class GameState:
    """Units and players of one running instance.

    Attributes:
        tick: Current simulation tick (host) or tick of the last applied
            snapshot (follower).
        units: unit_id -> Unit.
        players: player_id -> Player, in join order.
        next_unit_id: Counter for assigning unit ids (host only).
    """

    def __init__(self) -> None:
        self.tick: int = 0
        self.units: dict[int, Unit] = {}
        self.players: dict[str, Player] = {}
        self.next_unit_id: int = 1

    def create_unit(self, owner: str, x: float, y: float, **kwargs) -> Unit:
        """Create a new unit with a unique id, standing still at (x, y)."""
        unit = Unit(
            unit_id=self.next_unit_id,
            owner=owner,
            x=x,
            y=y,
            target_x=x,
            target_y=y,
            **kwargs,
        )
        self.next_unit_id += 1
        self.units[unit.unit_id] = unit
        return unit

    def get_unit(self, unit_id: int) -> Unit | None:
        return self.units.get(unit_id)

    def units_of(self, player_id: str) -> list[Unit]:
        return [u for u in self.units.values() if u.owner == player_id]

    def add_player(self, player_id: str) -> Player:
        player = self.players.get(player_id)
        if player is None:
            player = self.players[player_id] = Player.create(player_id)
        return player

    def remove_player(self, player_id: str) -> list[int]:
        """Remove a player and every unit it owns. Returns the removed unit ids."""
        self.players.pop(player_id, None)
        removed = [uid for uid, u in self.units.items() if u.owner == player_id]
        for uid in removed:
            del self.units[uid]
        return removed

    def color_of(self, player_id: str) -> tuple[int, int, int] | None:
        player = self.players.get(player_id)
        return player.color if player is not None else None
