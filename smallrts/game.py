"""Game state machine and frame loop.

Manages the game lifecycle: CONNECTING -> PLAYING -> DISCONNECTED.
One frame is: pygame input -> engine commands, one engine advance, render.
The loop yields to asyncio between frames so the relay and peer
connections make progress on the same event loop.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum, auto

import pygame

from smallrts.config import FRAME_DURATION_S
from smallrts.input.handler import InputHandler
from smallrts.networking.session import Session
from smallrts.rendering.renderer import Renderer
from smallrts.simulation.sync import SyncEngine

logger = logging.getLogger(__name__)


class GamePhase(Enum):
    CONNECTING = auto()
    PLAYING = auto()
    DISCONNECTED = auto()


class Game:
    """Main game controller. Owns the engine, the optional session and rendering.

    Args:
        screen: Display surface.
        engine: The simulation for this participant. Must already be
            started when no session is given.
        session: Network session driving `engine`, or None for local play.
    """

    def __init__(
        self,
        screen: pygame.Surface,
        engine: SyncEngine,
        session: Session | None = None,
    ) -> None:
        self._screen = screen
        self._engine = engine
        self._session = session
        self._clock = pygame.time.Clock()
        self._renderer = Renderer(screen)
        self._input: InputHandler | None = None
        self._phase = GamePhase.CONNECTING
        self._disconnect_reason = ""

    @property
    def phase(self) -> GamePhase:
        return self._phase

    async def run(self) -> None:
        """Main game loop. Returns when the window closes or the session ends."""
        net_task: asyncio.Task | None = None
        if self._session is not None:
            net_task = asyncio.create_task(self._session.run())

        running = True
        try:
            while running:
                events = pygame.event.get()
                for event in events:
                    if event.type == pygame.QUIT:
                        running = False
                    elif event.type == pygame.KEYDOWN and event.key == pygame.K_ESCAPE:
                        running = False
                if not running:
                    break

                self._update_phase(net_task)

                if self._phase == GamePhase.PLAYING:
                    self._update_playing(events)
                elif self._phase == GamePhase.CONNECTING:
                    self._draw_connecting()
                else:
                    self._renderer.draw_message(
                        "Disconnected", self._disconnect_reason, color=(220, 80, 60),
                    )

                self._clock.tick()
                await asyncio.sleep(FRAME_DURATION_S)
        finally:
            if self._session is not None:
                await self._session.close()
            if net_task is not None:
                net_task.cancel()
                try:
                    await net_task
                except asyncio.CancelledError:
                    pass

    def _update_phase(self, net_task: asyncio.Task | None) -> None:
        session = self._session
        if self._phase == GamePhase.DISCONNECTED:
            return

        if session is None:
            if self._engine.running:
                self._enter_playing()
            return

        if session.error is not None:
            self._disconnect(f"Relay error: {session.error}")
        elif self._phase == GamePhase.CONNECTING:
            if self._engine.running and session.host_ready:
                self._enter_playing()
            elif net_task is not None and net_task.done():
                self._disconnect("Signaling connection closed")
        elif not session.host_ready:
            self._disconnect("Lost connection to host")

    def _enter_playing(self) -> None:
        self._phase = GamePhase.PLAYING
        self._input = InputHandler(self._engine.local_player_id)
        logger.info("Game started! Player %s", self._engine.local_player_id)

    def _disconnect(self, reason: str) -> None:
        logger.warning("Disconnected: %s", reason)
        self._phase = GamePhase.DISCONNECTED
        self._disconnect_reason = reason

    def _update_playing(self, events: list[pygame.event.Event]) -> None:
        state = self._engine.state
        for cmd in self._input.process_events(events, state):
            self._engine.issue_command(cmd)

        self._engine.advance()

        debug_info = {
            "Tick": str(state.tick),
            "Player": str(self._engine.local_player_id),
            "Role": "host" if self._engine.is_authoritative else "follower",
            "Players": str(len(state.players)),
            "Units": str(len(state.units)),
            "FPS": str(int(self._clock.get_fps())),
        }
        if self._session is not None and self._session.room_id:
            debug_info["Room"] = self._session.room_id
        self._renderer.draw(state, debug_info, drag_rect=self._input.drag_rect)

    def _draw_connecting(self) -> None:
        session = self._session
        if session is None or session.room_id is None:
            self._renderer.draw_message("Connecting to relay...")
        else:
            self._renderer.draw_message(
                f"Room {session.room_id}", "Waiting for the host connection...",
            )
