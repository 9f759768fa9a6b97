"""The turn loop: scheduler tick -> snapshot -> prompt -> request -> parse -> actuate.

Everything here runs on one asyncio event loop. The only concurrent piece is
the outstanding request, and its completion is routed back through
``RequestLifecycle`` before any session state is touched.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from config import CRITICAL_SAVE_SLOT, LOOP_INTERVAL_MS, MODELS, SESSION_FILE
from claudemon.api_client import build_request
from claudemon.lifecycle import OutcomeKind, RequestLifecycle
from claudemon.memory import VerificationStatus
from claudemon.pacer import InputPacer
from claudemon.parser import CLEAR_ALL, CLEAR_NOTE, NOTE, parse_response
from claudemon.prompts import build_turn_prompt
from claudemon.scheduler import TurnScheduler
from claudemon.session import save_session
from claudemon.verification import TurnVerifier

logger = logging.getLogger(__name__)


class ControllerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"
    ERROR = "error"


@dataclass
class TurnContext:
    """What a dispatched turn needs once its reply arrives."""

    prompt: str
    frame: bytes
    search_query: str | None = None


class PlayerController:
    def __init__(
        self,
        environment,
        session,
        transport,
        telemetry=None,
        session_path=SESSION_FILE,
        loop=None,
        interval_ms=LOOP_INTERVAL_MS,
        save_slot=CRITICAL_SAVE_SLOT,
    ):
        """
        Args:
            environment: press_key / release_key / capture_frame / save_to_slot
            session: the Session this controller owns
            transport: object with ``async send(body)``
            telemetry: callable returning a GroundTruth or None. Defaults to
                ``environment.read_ground_truth`` when the environment has one.
            session_path: where the session is persisted, None to disable
        """
        self.environment = environment
        self.session = session
        self.transport = transport
        if telemetry is None:
            telemetry = getattr(environment, "read_ground_truth", None)
        self.telemetry = telemetry
        self.session_path = session_path
        self.save_slot = save_slot
        self.loop = loop or asyncio.get_running_loop()

        self.state = ControllerState.STOPPED
        self.events: asyncio.Queue = asyncio.Queue()
        self.tick_count = 0
        self.error_count = 0
        self.last_response = ""
        self.last_error: str | None = None

        self.scheduler = TurnScheduler(self._on_tick, loop=self.loop, interval_ms=interval_ms)
        self.lifecycle = RequestLifecycle(
            transport,
            self.scheduler,
            self._on_request_complete,
            backoff=session.backoff,
            loop=self.loop,
        )
        self.pacer = InputPacer(environment, loop=self.loop)
        self.verifier = TurnVerifier(records=session.turn_records, turn_history=session.turn_history)

        self._turn: TurnContext | None = None
        self._previous_frame: bytes | None = None
        self._search_query: str | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        if self.state is ControllerState.RUNNING:
            return True
        if not self.session.has_credential:
            logger.error("[Controller] Cannot start without an API key")
            self.last_error = "No API key configured"
            self._emit("error", message=self.last_error, code="missing_credential")
            return False

        if hasattr(self.transport, "set_api_key"):
            self.transport.set_api_key(self.session.api_credential)
        self.session.backoff.reset()
        self.state = ControllerState.RUNNING
        self.scheduler.start()
        logger.info(f"[Controller] Started with {self.session.model_id}")
        self._emit("state", state=self.state.value)
        return True

    def stop(self):
        """Halt everything now: timers, outstanding request, held key."""
        self.scheduler.stop()
        self.lifecycle.stop()
        self.pacer.stop()
        self._turn = None
        if self.state is not ControllerState.ERROR:
            self.state = ControllerState.STOPPED
        logger.info("[Controller] Stopped")
        self._emit("state", state=self.state.value)

    def pause(self):
        if self.state is not ControllerState.RUNNING:
            return
        self.scheduler.pause()
        self.state = ControllerState.PAUSED
        logger.info("[Controller] Paused")
        self._emit("state", state=self.state.value)

    def resume(self):
        if self.state is not ControllerState.PAUSED:
            return
        self.state = ControllerState.RUNNING
        self.scheduler.resume()
        logger.info("[Controller] Resumed")
        self._emit("state", state=self.state.value)

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    def _on_tick(self):
        self.tick_count += 1
        self._emit("tick", count=self.tick_count)
        if self.lifecycle.in_flight:
            logger.info("[Controller] Request in flight, skipping tick")
            return
        if self.pacer.busy:
            logger.info("[Controller] Still pressing last turn's buttons, skipping tick")
            return
        self.begin_turn()

    def _read_ground_truth(self):
        if self.telemetry is None:
            return None
        try:
            return self.telemetry()
        except Exception as e:
            logger.warning(f"[Controller] Ground truth unavailable: {e}")
            return None

    def begin_turn(self) -> bool:
        snapshot = self._read_ground_truth()
        finished = self.verifier.record_before(snapshot)

        movement = finished.observed_movement if finished else None
        changed = self.session.notes.validate_against_ground_truth(movement)
        contradicted = [n for n in changed if n.status is VerificationStatus.CONTRADICTED]
        if changed:
            self._persist()
            self._emit_notes()

        frame = self.environment.capture_frame()
        search_query = self._search_query if self.session.search_enabled else None
        prompt = build_turn_prompt(
            ground_truth=snapshot,
            notes_text=self.session.notes.render(),
            turn_summary=self.verifier.summary(),
            recent_inputs=list(self.session.recent_inputs),
            stuck_advisory=self.verifier.check_stuck_pattern(),
            contradicted=contradicted,
            has_previous_frame=self._previous_frame is not None,
            screen_changed=None if self._previous_frame is None else self._previous_frame != frame,
            search_query=search_query,
        )
        body = build_request(
            self.session,
            prompt,
            frame,
            previous_frame=self._previous_frame,
            search_query=search_query,
        )

        self._turn = TurnContext(prompt=prompt, frame=frame, search_query=search_query)
        return self.lifecycle.begin_turn(body)

    def _on_request_complete(self, outcome):
        if outcome.kind is OutcomeKind.SUCCESS:
            self._handle_reply(outcome.text)
            return

        self.error_count += 1
        self.last_error = str(outcome.error)
        if outcome.kind is OutcomeKind.CRITICAL:
            self._escalate(outcome.error)
            return
        self._emit(
            "error",
            message=self.last_error,
            code=outcome.error.code,
            consecutive=outcome.consecutive_errors,
            retry_in_ms=self.scheduler.interval_ms,
        )

    def _handle_reply(self, text: str):
        turn = self._turn
        self._turn = None
        self.last_response = text
        parsed = parse_response(text)

        self._apply_memory(parsed.memory)
        if turn is not None:
            self.session.history.add("user", turn.prompt)
            self._previous_frame = turn.frame
        self.session.history.add("assistant", text)

        self.verifier.record_commands(parsed.commands)
        self.session.recent_inputs.extend(str(c) for c in parsed.commands)
        self._search_query = parsed.search_query

        self.pacer.enqueue(parsed.commands)
        self._persist()

        self._emit("response", text=text, source=parsed.source)
        self._emit("inputs", commands=[str(c) for c in parsed.commands])
        if parsed.memory:
            self._emit_notes()

    def _apply_memory(self, directives):
        notes = self.session.notes
        for directive in directives:
            if directive.kind == CLEAR_ALL:
                notes.clear_all()
            elif directive.kind == CLEAR_NOTE:
                notes.clear(directive.note_id)
            elif directive.kind == NOTE:
                note = notes.add(directive.text)
                logger.info(f"[Notes] Added #{note.id}: {note.content}")
        if notes.needs_renumber:
            notes.renumber()

    def _escalate(self, error):
        """Critical failure: halt, save the game, tell the user."""
        logger.error(f"[Controller] Critical error, halting: {error}")
        self.scheduler.stop()
        self.lifecycle.stop()
        self.pacer.stop()
        self._turn = None
        self.state = ControllerState.ERROR

        saved_to = None
        try:
            saved_to = self.environment.save_to_slot(self.save_slot)
        except Exception as e:
            logger.error(f"[Controller] Emergency save to slot {self.save_slot} failed: {e}")

        self._emit(
            "critical",
            message=str(error),
            code=getattr(error, "code", "error"),
            save_slot=self.save_slot if saved_to is not None else None,
        )

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def set_api_key(self, api_key: str):
        self.session.api_credential = api_key.strip()
        if hasattr(self.transport, "set_api_key"):
            self.transport.set_api_key(self.session.api_credential)
        self._persist()

    def set_model(self, choice: str):
        if choice not in MODELS:
            raise ValueError(f"Unknown model '{choice}', expected one of {', '.join(MODELS)}")
        self.session.model_choice = choice
        self._persist()

    def set_thinking(self, enabled: bool):
        self.session.thinking_enabled = bool(enabled)
        self._persist()

    def set_search(self, enabled: bool):
        self.session.search_enabled = bool(enabled)
        self._persist()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def status(self) -> dict:
        last = self.verifier.last_record
        return {
            "state": self.state.value,
            "model": self.session.model_choice,
            "model_id": self.session.model_id,
            "thinking_enabled": self.session.thinking_enabled,
            "search_enabled": self.session.search_enabled,
            "has_api_key": self.session.has_credential,
            "tick_count": self.tick_count,
            "error_count": self.error_count,
            "consecutive_errors": self.session.backoff.consecutive_errors,
            "interval_ms": self.scheduler.interval_ms,
            "in_flight": self.lifecycle.in_flight,
            "actuating": self.pacer.busy,
            "notes": len(self.session.notes),
            "recent_inputs": list(self.session.recent_inputs),
            "last_turn": last.render() if last else None,
            "last_error": self.last_error,
        }

    def _persist(self):
        if not self.session_path:
            return
        try:
            save_session(self.session, self.session_path)
        except OSError as e:
            logger.error(f"[Controller] Failed to save session to {self.session_path}: {e}")

    def _emit(self, kind: str, **data):
        self.events.put_nowait({"type": kind, **data})

    def _emit_notes(self):
        self._emit("notes", notes=[n.to_dict() for n in self.session.notes])
