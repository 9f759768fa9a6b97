import asyncio
import logging

from config import LOOP_INTERVAL_MS

logger = logging.getLogger(__name__)


class TurnScheduler:
    """Periodic tick that starts turns.

    Backoff stretches the interval; the stretched value holds until a
    success calls ``restore_interval``. Whether a tick actually starts a turn
    is the tick handler's decision.
    """

    def __init__(self, on_tick, loop=None, interval_ms=LOOP_INTERVAL_MS):
        self.on_tick = on_tick
        self.loop = loop or asyncio.get_running_loop()
        self.nominal_ms = interval_ms
        self.interval_ms = interval_ms
        self.running = False
        self.paused = False
        self._handle = None

    def _arm(self, delay_ms=None):
        self._disarm()
        if delay_ms is None:
            delay_ms = self.interval_ms
        self._handle = self.loop.call_later(delay_ms / 1000, self._fire)

    def _disarm(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self):
        self._handle = None
        if not self.running or self.paused:
            return
        self._arm()
        self.on_tick()

    def start(self, immediate=True):
        self.running = True
        self.paused = False
        self.interval_ms = self.nominal_ms
        self._arm(0 if immediate else None)

    def stop(self):
        self.running = False
        self.paused = False
        self._disarm()

    def pause(self):
        self.paused = True
        self._disarm()

    def resume(self):
        if not self.running:
            return
        self.paused = False
        self._arm()

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def extend_interval(self, delay_ms: int):
        """Next ticks come every nominal + delay until restored."""
        self.interval_ms = self.nominal_ms + delay_ms
        logger.info(f"[Scheduler] Interval extended to {self.interval_ms} ms")
        if self.running and not self.paused:
            self._arm()

    def restore_interval(self):
        if self.interval_ms == self.nominal_ms:
            return
        self.interval_ms = self.nominal_ms
        logger.info(f"[Scheduler] Interval restored to {self.interval_ms} ms")
        if self.running and not self.paused:
            self._arm()
