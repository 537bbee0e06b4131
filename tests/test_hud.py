import queue

import pygame

from skyline_sonar.hud import HudLoop
from skyline_sonar.models import Command


def make_loop():
    commands: "queue.Queue[Command]" = queue.Queue()
    return HudLoop(queue.Queue(), commands), commands


def test_space_requests_sonification():
    loop, commands = make_loop()
    assert loop.handle_event(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_SPACE))
    assert commands.get_nowait() is Command.TRIGGER


def test_d_toggles_directional_policy():
    loop, commands = make_loop()
    loop.handle_event(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_d))
    assert commands.get_nowait() is Command.TOGGLE_DIRECTIONAL


def test_escape_and_quit_close_the_window():
    loop, commands = make_loop()
    assert not loop.handle_event(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_ESCAPE))
    assert not loop.handle_event(pygame.event.Event(pygame.QUIT))
    assert commands.empty()
