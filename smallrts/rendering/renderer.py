"""Game renderer: draws the background grid, units and debug overlay.

Pure presentation. Reads GameState and never mutates it.
"""

from __future__ import annotations

import pygame

from smallrts.config import (
    COLOR_BG,
    COLOR_DEBUG_TEXT,
    COLOR_GRID,
    COLOR_HP_BACK,
    COLOR_HP_FRONT,
    COLOR_SELECTION,
    COLOR_UNKNOWN_PLAYER,
    GRID_SPACING,
    SELECTION_RING_RADIUS,
    UNIT_RADIUS,
)
from smallrts.simulation.state import GameState, Unit

HP_BAR_WIDTH = 24
HP_BAR_HEIGHT = 3
HP_BAR_OFFSET = 20  # above the unit centre


class Renderer:
    """Draws the game state to the screen."""

    def __init__(self, screen: pygame.Surface) -> None:
        self._screen = screen
        self._font = pygame.font.SysFont("monospace", 16)
        self._big_font = pygame.font.SysFont("monospace", 24)

    def draw(
        self,
        state: GameState,
        debug_info: dict[str, str],
        drag_rect: tuple[int, int, int, int] | None = None,
    ) -> None:
        """Draw one frame."""
        self._screen.fill(COLOR_BG)
        self._draw_grid()
        for unit in state.units.values():
            self._draw_unit(state, unit)
        if drag_rect:
            self._draw_drag_rect(drag_rect)
        self._draw_debug(debug_info)
        pygame.display.flip()

    def draw_message(self, title: str, subtitle: str = "", color=COLOR_DEBUG_TEXT) -> None:
        """Draw a full-screen status message (connecting, disconnected)."""
        sw = self._screen.get_width()
        sh = self._screen.get_height()
        self._screen.fill(COLOR_BG)
        text = self._big_font.render(title, True, color)
        self._screen.blit(text, text.get_rect(center=(sw // 2, sh // 2)))
        if subtitle:
            sub = self._font.render(subtitle, True, (150, 150, 150))
            self._screen.blit(sub, sub.get_rect(center=(sw // 2, sh // 2 + 40)))
        pygame.display.flip()

    def _draw_grid(self) -> None:
        sw = self._screen.get_width()
        sh = self._screen.get_height()
        for x in range(0, sw, GRID_SPACING):
            pygame.draw.line(self._screen, COLOR_GRID, (x, 0), (x, sh))
        for y in range(0, sh, GRID_SPACING):
            pygame.draw.line(self._screen, COLOR_GRID, (0, y), (sw, y))

    def _draw_unit(self, state: GameState, unit: Unit) -> None:
        s = self._screen
        color = state.color_of(unit.owner) or COLOR_UNKNOWN_PLAYER
        sx, sy = round(unit.x), round(unit.y)

        if unit.is_moving:
            faded = tuple(c // 2 for c in color)
            pygame.draw.line(s, faded, (sx, sy), (round(unit.target_x), round(unit.target_y)), 1)

        pygame.draw.circle(s, color, (sx, sy), UNIT_RADIUS)

        if unit.selected:
            pygame.draw.circle(s, COLOR_SELECTION, (sx, sy), SELECTION_RING_RADIUS, 2)

        if unit.max_hp > 0:
            bx = sx - HP_BAR_WIDTH // 2
            by = sy - HP_BAR_OFFSET
            pygame.draw.rect(s, COLOR_HP_BACK, (bx, by, HP_BAR_WIDTH, HP_BAR_HEIGHT))
            fill = max(0, min(unit.hp, unit.max_hp)) * HP_BAR_WIDTH // unit.max_hp
            if fill:
                pygame.draw.rect(s, COLOR_HP_FRONT, (bx, by, fill, HP_BAR_HEIGHT))

    def _draw_drag_rect(self, drag_rect: tuple[int, int, int, int]) -> None:
        """Draw the selection drag rectangle (translucent)."""
        x1, y1, x2, y2 = drag_rect
        rx = min(x1, x2)
        ry = min(y1, y2)
        rw = abs(x2 - x1)
        rh = abs(y2 - y1)
        if rw < 2 or rh < 2:
            return
        rect_surf = pygame.Surface((rw, rh), pygame.SRCALPHA)
        rect_surf.fill((255, 255, 255, 30))
        self._screen.blit(rect_surf, (rx, ry))
        pygame.draw.rect(self._screen, COLOR_SELECTION, (rx, ry, rw, rh), 1)

    def _draw_debug(self, debug_info: dict[str, str]) -> None:
        y = 8
        for key, value in debug_info.items():
            text = self._font.render(f"{key}: {value}", True, COLOR_DEBUG_TEXT)
            self._screen.blit(text, (8, y))
            y += 20
