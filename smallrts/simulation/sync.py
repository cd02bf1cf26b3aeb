"""State sync engine: host-authoritative simulation with snapshot replication.

Exactly one participant runs a HostEngine. It owns the canonical units and
players, applies every command the moment it arrives, advances once per
frame and broadcasts a full snapshot every SNAPSHOT_INTERVAL advances on
the reliable channel.

Everyone else runs a FollowerEngine. A follower never changes units from
local input: commands go to the host over the fast channel and come back
only as part of a later snapshot. Each snapshot replaces the follower's
units wholesale, so a follower can never drift from the host by
accumulating partial updates. Between snapshots the follower keeps
stepping units toward their known targets so motion stays smooth.

Neither role acknowledges or retries anything. A lost input or a lost
snapshot is simply superseded by the next one.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from smallrts.config import (
    REJECT_STALE_SNAPSHOTS,
    SNAPSHOT_INTERVAL,
    SPAWN_ORIGIN_X,
    SPAWN_ORIGIN_Y,
    SPAWN_PLAYER_STEP_X,
    SPAWN_PLAYER_STEP_Y,
    SPAWN_UNIT_SPACING,
    STARTING_UNITS,
)
from smallrts.networking.peer import GameLink, PeerEventListener
from smallrts.networking.protocol import (
    ChannelClass,
    GameMessage,
    InputMessage,
    SnapshotMessage,
)
from smallrts.simulation.commands import Command
from smallrts.simulation.state import GameState, Unit
from smallrts.simulation.tick import advance_tick, apply_command, step_units

logger = logging.getLogger(__name__)


class SyncEngine(PeerEventListener, ABC):
    """Behaviour shared by both roles.

    The engine is the orchestrator's listener: it hears when a peer's
    channels are ready, when a peer is gone, and every decoded game message.
    It talks back to the network only through its GameLink.
    """

    is_authoritative: bool = False

    def __init__(self, link: GameLink) -> None:
        self.state = GameState()
        self.local_player_id: str | None = None
        self.running = False
        self._link = link

    @property
    def tick(self) -> int:
        return self.state.tick

    def start(self, player_id: str) -> None:
        """Begin playing as `player_id`."""
        self.local_player_id = player_id
        self.running = True

    @abstractmethod
    def issue_command(self, cmd: Command) -> None:
        """Handle a command produced by local input."""
        ...

    @abstractmethod
    def advance(self) -> None:
        """Run one frame of simulation."""
        ...

    def peer_message(self, peer_id: str, msg: GameMessage) -> None:
        if isinstance(msg, InputMessage):
            self._on_input(peer_id, msg)
        elif isinstance(msg, SnapshotMessage):
            self._on_snapshot(peer_id, msg)
        else:
            raise TypeError(f"Unhandled game message: {msg!r}")

    @abstractmethod
    def _on_input(self, peer_id: str, msg: InputMessage) -> None:
        ...

    @abstractmethod
    def _on_snapshot(self, peer_id: str, msg: SnapshotMessage) -> None:
        ...


class HostEngine(SyncEngine):
    """Authoritative role."""

    is_authoritative = True

    def start(self, player_id: str) -> None:
        super().start(player_id)
        self.add_player(player_id)

    def add_player(self, player_id: str) -> list[Unit]:
        """Register a player and spawn its starting roster.

        The roster is placed at an offset derived from the player count, so
        successive players are far enough apart that overlaps are never an
        issue. Adding a known player is a no-op.
        """
        if player_id in self.state.players:
            return []
        self.state.add_player(player_id)
        n = len(self.state.players)
        start_x = SPAWN_ORIGIN_X + n * SPAWN_PLAYER_STEP_X
        start_y = SPAWN_ORIGIN_Y + n * SPAWN_PLAYER_STEP_Y
        units = [
            self.state.create_unit(player_id, start_x + i * SPAWN_UNIT_SPACING, start_y)
            for i in range(STARTING_UNITS)
        ]
        logger.info("Player %s added with units %s", player_id, [u.unit_id for u in units])
        return units

    def remove_player(self, player_id: str) -> None:
        """Drop a player and everything it owns, effective immediately."""
        if player_id not in self.state.players:
            return
        removed = self.state.remove_player(player_id)
        logger.info("Player %s removed with units %s", player_id, removed)

    def handle_input(self, player_id: str, commands: tuple[Command, ...] | list[Command]) -> None:
        """Apply commands from a player against that player's own units."""
        for cmd in commands:
            apply_command(self.state, player_id, cmd)

    def issue_command(self, cmd: Command) -> None:
        if self.local_player_id is None:
            logger.debug("Dropping local command before start: %s", cmd)
            return
        apply_command(self.state, self.local_player_id, cmd)

    def advance(self) -> SnapshotMessage | None:
        """Advance one tick; broadcast and return a snapshot on every 4th tick."""
        advance_tick(self.state)
        if self.state.tick % SNAPSHOT_INTERVAL != 0:
            return None
        snapshot = self.snapshot()
        self._link.broadcast(ChannelClass.RELIABLE, snapshot)
        return snapshot

    def snapshot(self) -> SnapshotMessage:
        """Serialize every unit at the current tick."""
        return SnapshotMessage(
            tick=self.state.tick,
            units=tuple(u.to_dto() for u in self.state.units.values()),
        )

    def peer_ready(self, peer_id: str) -> None:
        self.add_player(peer_id)

    def peer_closed(self, peer_id: str) -> None:
        self.remove_player(peer_id)

    def _on_input(self, peer_id: str, msg: InputMessage) -> None:
        self.handle_input(peer_id, msg.commands)

    def _on_snapshot(self, peer_id: str, msg: SnapshotMessage) -> None:
        logger.debug("Host ignoring snapshot from %s", peer_id)


class FollowerEngine(SyncEngine):
    """Non-authoritative role.

    Args:
        link: Where inputs for the host are sent.
        reject_stale: Discard snapshots whose tick is lower than the last
            applied one. With False, whatever arrives last wins.
    """

    def __init__(self, link: GameLink, reject_stale: bool = REJECT_STALE_SNAPSHOTS) -> None:
        super().__init__(link)
        self.reject_stale = reject_stale
        self.last_snapshot_tick: int | None = None

    def issue_command(self, cmd: Command) -> None:
        """Forward to the host. Local units stay as they are."""
        self._link.send_to_host(ChannelClass.FAST, InputMessage(commands=(cmd,)))

    def advance(self) -> None:
        """Step units toward their targets between snapshots. No tick change."""
        step_units(self.state)

    def apply_snapshot(self, snapshot: SnapshotMessage) -> bool:
        """Replace the local units with the snapshot's contents.

        Units missing from the snapshot are dropped, unknown ones are created,
        and the local selection flag is kept for units that survive. Returns
        False if the snapshot was discarded as stale.
        """
        if (
            self.reject_stale
            and self.last_snapshot_tick is not None
            and snapshot.tick < self.last_snapshot_tick
        ):
            logger.debug("Discarding stale snapshot %d (last %d)",
                         snapshot.tick, self.last_snapshot_tick)
            return False

        old_units = self.state.units
        new_units: dict[int, Unit] = {}
        for dto in snapshot.units:
            unit = Unit.from_dto(dto)
            previous = old_units.get(dto.id)
            if previous is not None:
                unit.selected = previous.selected
            new_units[dto.id] = unit
        self.state.units = new_units
        self.state.tick = snapshot.tick
        self.last_snapshot_tick = snapshot.tick

        owners = {u.owner for u in new_units.values()}
        if self.local_player_id is not None:
            owners.add(self.local_player_id)
        for player_id in list(self.state.players):
            if player_id not in owners:
                del self.state.players[player_id]
        for owner in sorted(owners):
            self.state.add_player(owner)
        return True

    def peer_ready(self, peer_id: str) -> None:
        logger.info("Connected to host %s", peer_id)

    def peer_closed(self, peer_id: str) -> None:
        self.state.remove_player(peer_id)

    def _on_input(self, peer_id: str, msg: InputMessage) -> None:
        logger.debug("Follower ignoring input from %s", peer_id)

    def _on_snapshot(self, peer_id: str, msg: SnapshotMessage) -> None:
        self.apply_snapshot(msg)
