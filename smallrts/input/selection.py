"""Selection manager: tracks which units the local player has selected.

Selection is LOCAL ONLY. It is mirrored onto Unit.selected for drawing, is
never sent over the network, and survives snapshots for units that still
exist. Only the local player's own units can be selected.
"""

from __future__ import annotations

from smallrts.simulation.state import Unit


class SelectionManager:
    """Tracks the set of currently selected unit IDs."""

    def __init__(self) -> None:
        self.selected_ids: set[int] = set()

    def select_at(
        self,
        x: float,
        y: float,
        units: list[Unit],
        player_id: str,
        threshold: float,
    ) -> None:
        """Click-select every own unit within `threshold` pixels of (x, y)."""
        threshold_sq = threshold * threshold
        self.selected_ids.clear()
        for u in units:
            if u.owner != player_id:
                continue
            dx = u.x - x
            dy = u.y - y
            u.selected = dx * dx + dy * dy < threshold_sq
            if u.selected:
                self.selected_ids.add(u.unit_id)

    def select_in_rect(
        self,
        x1: float,
        y1: float,
        x2: float,
        y2: float,
        units: list[Unit],
        player_id: str,
    ) -> None:
        """Box-select all own units within a rectangle.

        Args:
            x1, y1: One corner of the rectangle.
            x2, y2: Opposite corner.
            units: All units.
            player_id: The local player's ID.
        """
        min_x, max_x = min(x1, x2), max(x1, x2)
        min_y, max_y = min(y1, y2), max(y1, y2)

        self.selected_ids.clear()
        for u in units:
            if u.owner != player_id:
                continue
            u.selected = min_x <= u.x <= max_x and min_y <= u.y <= max_y
            if u.selected:
                self.selected_ids.add(u.unit_id)

    def sync(self, units: list[Unit]) -> None:
        """Re-read the selection from the units, dropping ids that vanished."""
        self.selected_ids = {u.unit_id for u in units if u.selected}

    def clear(self, units: list[Unit] | None = None) -> None:
        """Deselect all."""
        self.selected_ids.clear()
        for u in units or ():
            u.selected = False
