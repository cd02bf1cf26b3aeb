"""Input handler: converts pygame events to Commands.

Left click/drag: select own units (delegates to SelectionManager).
Right click: MOVE the selected units to the cursor.
S: STOP the selected units.
"""

from __future__ import annotations

import pygame

from smallrts.config import SELECTION_THRESHOLD
from smallrts.input.selection import SelectionManager
from smallrts.simulation.commands import Command
from smallrts.simulation.state import GameState


class InputHandler:
    """Converts pygame mouse/keyboard events into simulation Commands."""

    def __init__(self, player_id: str) -> None:
        self.player_id = player_id
        self.selection = SelectionManager()
        # Drag state (screen coords)
        self._drag_start: tuple[int, int] | None = None
        self._drag_current: tuple[int, int] | None = None
        self._dragging = False

    @property
    def drag_rect(self) -> tuple[int, int, int, int] | None:
        """Return the current drag rectangle in screen coords, or None."""
        if self._dragging and self._drag_start and self._drag_current:
            return (*self._drag_start, *self._drag_current)
        return None

    def process_events(self, events: list[pygame.event.Event], state: GameState) -> list[Command]:
        """Process pygame events and return any Commands generated."""
        units = list(state.units.values())
        self.selection.sync(units)
        commands: list[Command] = []
        for event in events:
            if event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
                self._drag_start = event.pos
                self._drag_current = event.pos
                self._dragging = False

            elif event.type == pygame.MOUSEMOTION and self._drag_start is not None:
                self._drag_current = event.pos
                dx = event.pos[0] - self._drag_start[0]
                dy = event.pos[1] - self._drag_start[1]
                if dx * dx + dy * dy > SELECTION_THRESHOLD * SELECTION_THRESHOLD:
                    self._dragging = True

            elif event.type == pygame.MOUSEBUTTONUP and event.button == 1:
                if self._drag_start is not None:
                    if self._dragging:
                        self.selection.select_in_rect(
                            *self._drag_start, *event.pos, units, self.player_id,
                        )
                    else:
                        self.selection.select_at(
                            *event.pos, units, self.player_id, SELECTION_THRESHOLD,
                        )
                self._drag_start = None
                self._drag_current = None
                self._dragging = False

            elif event.type == pygame.MOUSEBUTTONDOWN and event.button == 3:
                if self.selection.selected_ids:
                    x, y = event.pos
                    commands.append(Command.move(
                        round(x), round(y), tuple(sorted(self.selection.selected_ids)),
                    ))

            elif event.type == pygame.KEYDOWN and event.key == pygame.K_s:
                if self.selection.selected_ids:
                    commands.append(Command.stop(tuple(sorted(self.selection.selected_ids))))

        return commands
