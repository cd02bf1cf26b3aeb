"""Tick logic: command execution and movement stepping.

The host calls advance_tick() once per frame. Commands are not queued per
tick; apply_command() is called as soon as a command arrives and takes
effect on the next step.
"""

from __future__ import annotations

import logging

from smallrts.simulation.commands import Command, CommandType
from smallrts.simulation.state import GameState

logger = logging.getLogger(__name__)


def advance_tick(state: GameState) -> None:
    """Advance the simulation by one tick.

    Args:
        state: The current game state (mutated in place).
    """
    state.tick += 1
    step_units(state)


def step_units(state: GameState) -> None:
    """Move every unit one step toward its target."""
    for unit in state.units.values():
        if unit.is_moving:
            unit.step()


def apply_command(state: GameState, player_id: str, cmd: Command) -> int:
    """Apply a command on behalf of a player.

    Only units owned by `player_id` are affected; naming anyone else's unit
    is a no-op for that unit. Returns the number of units affected.
    """
    if cmd.command_type == CommandType.MOVE:
        return _handle_move(state, player_id, cmd)
    if cmd.command_type == CommandType.STOP:
        return _handle_stop(state, player_id, cmd)
    logger.debug("Unhandled command %s from %s", cmd.command_type, player_id)
    return 0


def _handle_move(state: GameState, player_id: str, cmd: Command) -> int:
    count = 0
    for unit in state.units.values():
        if unit.owner == player_id and cmd.targets(unit.unit_id):
            unit.move_to(cmd.target_x, cmd.target_y)
            count += 1
    return count


def _handle_stop(state: GameState, player_id: str, cmd: Command) -> int:
    """Stop units at their current position."""
    count = 0
    for unit in state.units.values():
        if unit.owner == player_id and cmd.targets(unit.unit_id):
            unit.move_to(unit.x, unit.y)
            count += 1
    return count
