"""Tests for movement stepping and tick advancement."""

import pytest

from smallrts.simulation.state import Unit
from smallrts.simulation.tick import advance_tick, step_units


def _unit(x=0.0, y=0.0, tx=0.0, ty=0.0, speed=2) -> Unit:
    return Unit(unit_id=1, owner="p1", x=x, y=y, target_x=tx, target_y=ty, speed=speed)


class TestStep:
    def test_moves_speed_pixels_toward_target(self):
        u = _unit(tx=10)
        u.step()
        assert (u.x, u.y) == (2, 0)

    def test_diagonal_step_length(self):
        u = _unit(tx=30, ty=40)
        u.step()
        assert u.x == pytest.approx(1.2)
        assert u.y == pytest.approx(1.6)

    def test_snaps_when_within_one_step(self):
        u = _unit(x=9, tx=10)
        u.step()
        assert (u.x, u.y) == (10, 0)
        assert not u.is_moving

    def test_no_overshoot_or_oscillation(self):
        u = _unit(tx=7)
        positions = []
        for _ in range(10):
            u.step()
            positions.append(u.x)
        assert positions[:4] == [2, 4, 6, 7]
        assert all(x == 7 for x in positions[3:])

    def test_exact_distance_lands_on_target(self):
        u = _unit(tx=2)
        u.step()
        assert u.x == 2
        u.step()
        assert u.x == 2


class TestAdvanceTick:
    def test_increments_tick(self, game_state):
        advance_tick(game_state)
        advance_tick(game_state)
        assert game_state.tick == 2

    def test_steps_every_moving_unit(self, game_state):
        a = game_state.create_unit("p1", 0, 0)
        b = game_state.create_unit("p2", 100, 100)
        a.move_to(10, 0)
        advance_tick(game_state)
        assert a.x == 2
        assert (b.x, b.y) == (100, 100)

    def test_step_units_leaves_tick_alone(self, game_state):
        u = game_state.create_unit("p1", 0, 0)
        u.move_to(0, 10)
        step_units(game_state)
        assert game_state.tick == 0
        assert u.y == 2
