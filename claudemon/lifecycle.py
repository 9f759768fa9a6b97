"""Single-flight request lifecycle with timeout and exponential backoff.

There is never more than one request outstanding. Each request gets a token;
a reply that arrives after its deadline (or after ``stop``) carries a stale
token and is dropped. Failures grow the scheduler's interval instead of
arming a retry timer, so the next scheduled tick *is* the retry.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from config import BACKOFF_BASE_MS, BACKOFF_MAX_MS, MAX_CONSECUTIVE_ERRORS, REQUEST_TIMEOUT_MS
from claudemon.api_client import interpret_reply
from claudemon.errors import ClaudemonError, MalformedResponseError, RequestTimeout

logger = logging.getLogger(__name__)


@dataclass
class BackoffState:
    consecutive_errors: int = 0
    multiplier: int = 1
    base_ms: int = BACKOFF_BASE_MS
    max_ms: int = BACKOFF_MAX_MS

    @property
    def delay_ms(self) -> int:
        if self.consecutive_errors == 0:
            return 0
        return min(self.base_ms * self.multiplier, self.max_ms)

    def record_failure(self) -> int:
        """Count a failure and return the delay to add to the next interval.

        The n-th consecutive failure yields min(base * 2**(n-1), max).
        """
        self.consecutive_errors += 1
        if self.consecutive_errors > 1:
            self.multiplier *= 2
        return self.delay_ms

    def reset(self):
        self.consecutive_errors = 0
        self.multiplier = 1


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    RECOVERABLE = "recoverable"
    CRITICAL = "critical"


@dataclass
class RequestOutcome:
    kind: OutcomeKind
    token: int
    text: str = ""
    body: dict | None = None
    error: ClaudemonError | None = None
    delay_ms: int = 0
    consecutive_errors: int = 0


class RequestLifecycle:
    def __init__(
        self,
        transport,
        scheduler,
        on_complete,
        backoff=None,
        loop=None,
        timeout_ms=REQUEST_TIMEOUT_MS,
        max_consecutive_errors=MAX_CONSECUTIVE_ERRORS,
    ):
        """
        Args:
            transport: object with ``async send(body) -> (status, body)``
            scheduler: the TurnScheduler whose interval backoff stretches
            on_complete: called with a RequestOutcome on the control loop
            backoff: BackoffState owned by the session
        """
        self.transport = transport
        self.scheduler = scheduler
        self.on_complete = on_complete
        self.backoff = backoff if backoff is not None else BackoffState()
        self.loop = loop or asyncio.get_running_loop()
        self.timeout_ms = timeout_ms
        self.max_consecutive_errors = max_consecutive_errors

        self.in_flight = False
        self._token = 0
        self._task: asyncio.Task | None = None
        self._timeout_handle = None

    @property
    def token(self) -> int:
        return self._token

    def begin_turn(self, body: dict) -> bool:
        """Dispatch ``body``. Returns False (and does nothing) if busy."""
        if self.in_flight:
            logger.info(f"[Request] #{self._token} still in flight, not starting another")
            return False

        self._token += 1
        token = self._token
        self.in_flight = True
        self._timeout_handle = self.loop.call_later(self.timeout_ms / 1000, self._on_timeout, token)
        self._task = self.loop.create_task(self._dispatch(token, body))
        logger.info(f"[Request] #{token} sent")
        return True

    async def _dispatch(self, token: int, body: dict):
        try:
            status, reply = await self.transport.send(body)
        except ClaudemonError as e:
            self._complete(token, error=e)
            return
        except Exception as e:
            logger.exception(f"[Request] #{token} transport raised unexpectedly")
            self._complete(token, error=MalformedResponseError(f"{type(e).__name__}: {e}"))
            return
        self._complete(token, status=status, reply=reply)

    def _on_timeout(self, token: int):
        if token != self._token or not self.in_flight:
            return
        logger.warning(f"[Request] #{token} timed out after {self.timeout_ms} ms")
        task = self._task
        self._finish()
        if task is not None and not task.done():
            task.cancel()
        self._fail(token, RequestTimeout(f"No response within {self.timeout_ms} ms"))

    def _complete(self, token: int, status=None, reply=None, error=None):
        if token != self._token or not self.in_flight:
            logger.info(f"[Request] Discarding late response for #{token}")
            return
        self._finish()

        if error is None:
            try:
                text = interpret_reply(status, reply)
            except ClaudemonError as e:
                error = e
        if error is not None:
            self._fail(token, error)
            return

        self.backoff.reset()
        self.scheduler.restore_interval()
        self.on_complete(RequestOutcome(OutcomeKind.SUCCESS, token, text=text, body=reply))

    def _fail(self, token: int, error: ClaudemonError):
        delay_ms = self.backoff.record_failure()
        count = self.backoff.consecutive_errors
        critical = error.fatal or count >= self.max_consecutive_errors

        if critical:
            logger.error(f"[Request] #{token} failed critically ({error.code}, {count} in a row): {error}")
            kind = OutcomeKind.CRITICAL
        else:
            logger.warning(
                f"[Request] #{token} failed ({error.code}, {count} in a row): {error}. "
                f"Next turn in +{delay_ms} ms"
            )
            self.scheduler.extend_interval(delay_ms)
            kind = OutcomeKind.RECOVERABLE

        self.on_complete(RequestOutcome(
            kind, token, error=error, delay_ms=delay_ms, consecutive_errors=count
        ))

    def _finish(self):
        self.in_flight = False
        self._task = None
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    def stop(self):
        """Abandon any outstanding request; its reply will be discarded."""
        task = self._task
        self._finish()
        self._token += 1
        if task is not None and not task.done():
            task.cancel()

    async def wait_idle(self):
        """Wait for the outstanding dispatch task, if any, to settle."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
