from __future__ import annotations

import logging
import math
import queue
import threading

import pygame

from .models import Capability, Command, FilteredBuilding, RenderState, Timbre
from .sonification import classify_timbre

WINDOW_SIZE = (480, 480)
BACKGROUND_COLOR = (10, 10, 10)
FOREGROUND_COLOR = (40, 200, 255)
CONE_COLOR = (40, 90, 120)
ERROR_COLOR = (255, 80, 80)

TIMBRE_COLORS = {
    Timbre.PERCUSSIVE: (255, 140, 40),
    Timbre.SYNTH: (40, 255, 120),
    Timbre.FM: (200, 120, 255),
    Timbre.DEFAULT: (230, 230, 230),
}


logger = logging.getLogger(__name__)


class HudRenderer:
    """Heading-up radar of the buildings around the user."""

    def __init__(self, refresh_rate: float = 30.0) -> None:
        pygame.init()
        pygame.font.init()
        pygame.display.set_caption("Skyline Sonar")
        pygame.display.set_mode(WINDOW_SIZE)
        self.screen = pygame.display.get_surface()
        self.clock = pygame.time.Clock()
        self.refresh_rate = refresh_rate
        self.font = pygame.font.SysFont(None, 18)
        logger.info("HUD renderer initialized (refresh_rate=%s)", self.refresh_rate)

    @property
    def center(self) -> tuple[int, int]:
        return WINDOW_SIZE[0] // 2, WINDOW_SIZE[1] // 2

    @property
    def radius(self) -> int:
        return min(WINDOW_SIZE) // 2 - 30

    def screen_angle(self, bearing_deg: float, heading_deg: float) -> float:
        # screen up is the current heading; pygame y grows downwards
        return math.radians(bearing_deg - heading_deg - 90)

    def draw_compass(self, heading_deg: float) -> None:
        pygame.draw.circle(self.screen, FOREGROUND_COLOR, self.center, self.radius, width=2)
        for bearing in range(0, 360, 45):
            angle = self.screen_angle(bearing, heading_deg)
            inner = (
                int(self.center[0] + math.cos(angle) * (self.radius - 10)),
                int(self.center[1] + math.sin(angle) * (self.radius - 10)),
            )
            outer = (
                int(self.center[0] + math.cos(angle) * self.radius),
                int(self.center[1] + math.sin(angle) * self.radius),
            )
            pygame.draw.line(self.screen, FOREGROUND_COLOR, inner, outer, width=1)
        north = self.screen_angle(0, heading_deg)
        label = self.font.render("N", True, FOREGROUND_COLOR)
        pos = (
            int(self.center[0] + math.cos(north) * (self.radius + 14)),
            int(self.center[1] + math.sin(north) * (self.radius + 14)),
        )
        self.screen.blit(label, (pos[0] - label.get_width() // 2, pos[1] - label.get_height() // 2))

    def draw_cone(self, half_width_deg: float) -> None:
        for edge in (-half_width_deg, half_width_deg):
            angle = math.radians(edge - 90)
            end = (
                int(self.center[0] + math.cos(angle) * self.radius),
                int(self.center[1] + math.sin(angle) * self.radius),
            )
            pygame.draw.line(self.screen, CONE_COLOR, self.center, end, width=1)

    def draw_building(self, item: FilteredBuilding, heading_deg: float, radius_km: float) -> None:
        angle = self.screen_angle(item.bearing_deg, heading_deg)
        scale = min(1.0, item.distance_km / radius_km) if radius_km > 0 else 0.0
        pos = (
            int(self.center[0] + math.cos(angle) * self.radius * scale),
            int(self.center[1] + math.sin(angle) * self.radius * scale),
        )
        color = TIMBRE_COLORS[classify_timbre(item.building.usage_tag)]
        height = item.building.height_m
        size = 3 if height is None else max(3, min(12, int(3 + height / 25)))
        pygame.draw.circle(self.screen, color, pos, size)

    def draw_status(self, state: RenderState) -> None:
        lines = []
        if state.pose is not None:
            position = state.pose.position
            lines.append(f"Lat {position.latitude_deg:.6f}  Lon {position.longitude_deg:.6f}")
            if state.pose.heading is not None:
                lines.append(f"Heading {state.pose.heading.degrees_from_north:.1f}")
        else:
            lines.append("Waiting for position...")
        for capability, status in state.capabilities.items():
            if status.reason:
                lines.append(f"{capability.value}: {status.reason}")
        lines.append(
            f"{len(state.filtered)} buildings within {state.policy.radius_km:g} km"
            + (" (cone)" if state.policy.directional else "")
        )
        y = 8
        for text in lines:
            surface = self.font.render(text, True, FOREGROUND_COLOR)
            self.screen.blit(surface, (8, y))
            y += surface.get_height() + 2
        if state.error:
            surface = self.font.render(state.error, True, ERROR_COLOR)
            self.screen.blit(surface, (8, WINDOW_SIZE[1] - surface.get_height() - 8))

    def render(self, state: RenderState) -> None:
        heading = 0.0
        if state.pose is not None and state.pose.heading is not None:
            heading = state.pose.heading.degrees_from_north
        self.screen.fill(BACKGROUND_COLOR)
        self.draw_compass(heading)
        heading_status = state.capabilities.get(Capability.HEADING)
        if state.policy.directional and heading_status is not None and heading_status.available:
            self.draw_cone(state.policy.cone_half_width_deg)
        for item in state.filtered:
            self.draw_building(item, heading, state.policy.radius_km)
        pygame.draw.circle(self.screen, FOREGROUND_COLOR, self.center, 4)
        self.draw_status(state)
        pygame.display.update()


class HudLoop(threading.Thread):
    def __init__(
        self,
        state_queue: "queue.Queue[RenderState]",
        command_queue: "queue.Queue[Command]",
    ) -> None:
        super().__init__(daemon=True)
        self.state_queue = state_queue
        self.command_queue = command_queue
        self._running = threading.Event()
        self._running.set()
        self.renderer: HudRenderer | None = None
        self._last_state: RenderState | None = None

    def handle_event(self, event: pygame.event.Event) -> bool:
        if event.type == pygame.QUIT:
            return False
        if event.type == pygame.KEYDOWN:
            if event.key == pygame.K_ESCAPE:
                return False
            if event.key == pygame.K_SPACE:
                self.command_queue.put(Command.TRIGGER)
                logger.debug("Sonification requested from HUD")
            elif event.key == pygame.K_d:
                self.command_queue.put(Command.TOGGLE_DIRECTIONAL)
                logger.debug("Directional toggle requested from HUD")
        return True

    def run(self) -> None:
        self.renderer = HudRenderer()
        logger.info("HUD loop thread started")
        try:
            while self._running.is_set():
                for event in pygame.event.get():
                    if not self.handle_event(event):
                        self._running.clear()
                        break
                try:
                    self._last_state = self.state_queue.get(timeout=0.1)
                except queue.Empty:
                    pass
                if self._last_state is not None:
                    self.renderer.render(self._last_state)
                self.renderer.clock.tick(self.renderer.refresh_rate)
        finally:
            pygame.quit()
            self.renderer = None
            logger.info("HUD loop thread exiting")

    @property
    def closed(self) -> bool:
        return not self._running.is_set()

    def stop(self) -> None:
        self._running.clear()
        if self.renderer is not None:
            pygame.event.post(pygame.event.Event(pygame.QUIT))
            logger.debug("QUIT event posted to HUD loop")
