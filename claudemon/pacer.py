"""Deliver parsed commands to the environment as timed press/release pairs.

IDLE: no key held, no timer. ACTUATING: exactly one key held and a release
timer armed. When the timer fires the key is released and the next queued
action (if any) is pressed straight away.
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum

from config import BUTTON_HOLD_MS, DIRECTION_HOLD_MS
from claudemon.parser import KEY_NAMES

logger = logging.getLogger(__name__)


class PacerState(str, Enum):
    IDLE = "idle"
    ACTUATING = "actuating"


@dataclass
class PendingAction:
    key_code: int
    is_directional: bool
    remaining_repeat_count: int
    original_repeat_count: int

    @classmethod
    def from_command(cls, command) -> "PendingAction":
        # A directional repeat is one long hold, not N taps
        presses = 1 if command.is_directional else command.count
        return cls(
            key_code=command.key_code,
            is_directional=command.is_directional,
            remaining_repeat_count=presses,
            original_repeat_count=command.count,
        )

    @property
    def name(self) -> str:
        return KEY_NAMES.get(self.key_code, str(self.key_code)).upper()


class InputPacer:
    def __init__(self, environment, loop=None, direction_hold_ms=DIRECTION_HOLD_MS, button_hold_ms=BUTTON_HOLD_MS):
        self.environment = environment
        self.loop = loop or asyncio.get_running_loop()
        self.direction_hold_ms = direction_hold_ms
        self.button_hold_ms = button_hold_ms

        self.state = PacerState.IDLE
        self.queue: deque[PendingAction] = deque()
        self.held: PendingAction | None = None
        self._handle = None

    @property
    def busy(self) -> bool:
        return self.state is PacerState.ACTUATING or bool(self.queue)

    def hold_ms(self, action: PendingAction) -> int:
        if action.is_directional:
            return self.direction_hold_ms * action.original_repeat_count
        return self.button_hold_ms

    def enqueue(self, commands):
        for command in commands:
            self.queue.append(PendingAction.from_command(command))
        if self.state is PacerState.IDLE:
            self._press_next()

    def _press_next(self):
        if not self.queue:
            self.state = PacerState.IDLE
            return

        action = self.queue[0]
        action.remaining_repeat_count -= 1
        if action.remaining_repeat_count <= 0:
            self.queue.popleft()

        duration = self.hold_ms(action)
        self.environment.press_key(action.key_code)
        self.held = action
        self.state = PacerState.ACTUATING
        self._handle = self.loop.call_later(duration / 1000, self._release)
        logger.debug(f"[Pacer] Press {action.name} for {duration} ms")

    def _release(self):
        self._handle = None
        action = self.held
        self.held = None
        if action is not None:
            self.environment.release_key(action.key_code)
            logger.debug(f"[Pacer] Release {action.name}")
        self._press_next()

    def stop(self):
        """Drop everything queued and release whatever is held."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self.held is not None:
            self.environment.release_key(self.held.key_code)
            logger.info(f"[Pacer] Released held {self.held.name} on stop")
            self.held = None
        self.queue.clear()
        self.state = PacerState.IDLE
