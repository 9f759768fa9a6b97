import asyncio

import pytest

from claudemon.controller import PlayerController
from claudemon.session import Session
from claudemon.telemetry import GroundTruth

# Sent by _ScriptedTransport to mean "never answer"
HANG = object()


class _Handle:
    def __init__(self, when, seq, callback, args):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeLoop:
    """Manual clock with the call_later surface the engine schedules on.

    Tasks go to the real running loop so coroutines still execute.
    """

    def __init__(self):
        self.now = 0.0
        self._seq = 0
        self._handles: list[_Handle] = []

    def time(self):
        return self.now

    def call_later(self, delay, callback, *args):
        self._seq += 1
        handle = _Handle(self.now + delay, self._seq, callback, args)
        self._handles.append(handle)
        return handle

    def call_soon(self, callback, *args):
        return self.call_later(0, callback, *args)

    def create_task(self, coro):
        return asyncio.get_running_loop().create_task(coro)

    @property
    def pending(self) -> list[_Handle]:
        return [h for h in self._handles if not h.cancelled]

    def advance(self, seconds):
        """Move the clock forward, firing due callbacks in time order."""
        target = self.now + seconds
        while True:
            due = [h for h in self.pending if h.when <= target + 1e-9]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self._handles.remove(handle)
            self.now = max(self.now, handle.when)
            handle.callback(*handle.args)
        self.now = target


class FakeEnvironment:
    def __init__(self, clock=None, position=(5, 5), in_battle=False):
        self.clock = clock
        self.position = position
        self.in_battle = in_battle
        self.events = []
        self.held = set()
        self.saved_slots = []
        self.fail_save = False
        self.frame = b"\x89PNG frame-0"

    def _now(self):
        return self.clock.now if self.clock else 0.0

    def press_key(self, code):
        self.events.append(("press", code, self._now()))
        self.held.add(code)

    def release_key(self, code):
        self.events.append(("release", code, self._now()))
        self.held.discard(code)

    def capture_frame(self, upscale=2):
        return self.frame

    def read_ground_truth(self):
        if self.position is None:
            return None
        x, y = self.position
        return GroundTruth(x=x, y=y, in_battle=self.in_battle)

    def save_to_slot(self, slot):
        if self.fail_save:
            raise OSError("disk full")
        self.saved_slots.append(slot)
        return f"saves/slot_{slot}.state"


class ScriptedTransport:
    """Replies in order: (status, body) tuples, exceptions to raise, or HANG."""

    def __init__(self, replies=()):
        self.replies = list(replies)
        self.requests = []
        self.api_key = None

    def set_api_key(self, api_key):
        self.api_key = api_key

    async def send(self, body):
        self.requests.append(body)
        reply = self.replies.pop(0)
        if reply is HANG:
            await asyncio.Event().wait()
        if isinstance(reply, Exception):
            raise reply
        return reply


def text_reply(text):
    return 200, {"content": [{"type": "text", "text": text}]}


def error_reply(kind, message="", status=400):
    return status, {"type": "error", "error": {"type": kind, "message": message}}


@pytest.fixture
def fake_loop():
    return FakeLoop()


@pytest.fixture
def environment(fake_loop):
    return FakeEnvironment(clock=fake_loop)


@pytest.fixture
def session():
    return Session(api_credential="sk-test")


@pytest.fixture
def make_controller(fake_loop, environment, session, tmp_path):
    def _make(replies=(), **kwargs):
        transport = ScriptedTransport(replies)
        controller = PlayerController(
            environment,
            session,
            transport,
            session_path=str(tmp_path / "session.json"),
            loop=fake_loop,
            **kwargs,
        )
        return controller, transport

    return _make
