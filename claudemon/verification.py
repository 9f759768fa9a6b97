"""Score each turn against ground truth and spot the agent walking into walls.

A turn's commands are only actuated after its reply arrives, so the "after"
position of turn N is the "before" position sampled at the start of turn N+1.
``record_before`` closes the pending record with that sample.
"""
import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from enum import Enum

from config import MAX_TURN_RECORDS, STUCK_THRESHOLD, STUCK_WINDOW_TURNS
from claudemon.parser import Command
from claudemon.telemetry import GroundTruth

logger = logging.getLogger(__name__)


class TurnResult(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass
class TurnRecord:
    turn_number: int
    inputs: list[Command] = field(default_factory=list)
    position_before: tuple[int, int] | None = None
    position_after: tuple[int, int] | None = None
    had_position: bool = False
    position_changed: bool = False
    result: TurnResult = TurnResult.UNKNOWN
    reason: str = "pending"
    in_battle: bool = False

    @property
    def observed_movement(self) -> bool | None:
        """Whether the player moved, or None when telemetry can't say."""
        if not self.had_position or self.in_battle:
            return None
        return self.position_changed

    def render(self) -> str:
        inputs = ", ".join(str(c) for c in self.inputs) or "(none)"
        return f"Turn {self.turn_number}: {inputs} -> {self.result.value.upper()} ({self.reason})"


def score_turn(before, after, commands, in_battle=False) -> tuple[TurnResult, str]:
    """Classify a finished turn from its positions and the commands it sent."""
    directional = [c for c in commands if c.is_directional]
    if not directional:
        return TurnResult.UNKNOWN, "no directional input"
    if before is None or after is None:
        return TurnResult.UNKNOWN, "no ground truth available"
    if in_battle:
        return TurnResult.UNKNOWN, "in battle, position not meaningful"
    moves = ", ".join(str(c) for c in directional)
    if tuple(before) != tuple(after):
        return TurnResult.SUCCESS, f"position changed {tuple(before)} -> {tuple(after)}"
    return TurnResult.FAILED, f"position unchanged at {tuple(before)} after {moves}"


class TurnVerifier:
    def __init__(
        self,
        records=None,
        turn_history=None,
        window=STUCK_WINDOW_TURNS,
        threshold=STUCK_THRESHOLD,
        turn_number=0,
    ):
        self.records: deque[TurnRecord] = records if records is not None else deque(maxlen=MAX_TURN_RECORDS)
        self.turn_history: deque[str] = turn_history if turn_history is not None else deque(maxlen=MAX_TURN_RECORDS)
        self.window = window
        self.threshold = threshold
        self.turn_number = turn_number
        self.pending: TurnRecord | None = None
        self._before: GroundTruth | None = None

    @property
    def last_record(self) -> TurnRecord | None:
        return self.records[-1] if self.records else None

    def record_before(self, snapshot: GroundTruth | None) -> TurnRecord | None:
        """Sample ground truth at the start of a turn.

        Returns the previous turn's record if this sample closed it.
        """
        finished = None
        if self.pending is not None:
            finished = self.record_after(snapshot)
        self._before = snapshot
        return finished

    def record_commands(self, commands: list[Command]) -> TurnRecord:
        """Open a record for the commands about to be actuated this turn."""
        self.turn_number += 1
        before = self._before
        self.pending = TurnRecord(
            turn_number=self.turn_number,
            inputs=list(commands),
            position_before=before.position if before else None,
            in_battle=bool(before and before.in_battle),
        )
        return self.pending

    def record_after(self, snapshot: GroundTruth | None) -> TurnRecord:
        record = self.pending
        self.pending = None
        after = snapshot.position if snapshot else None

        record.position_after = after
        record.had_position = record.position_before is not None and after is not None
        record.position_changed = record.had_position and record.position_before != after
        record.in_battle = record.in_battle or bool(snapshot and snapshot.in_battle)
        record.result, record.reason = score_turn(
            record.position_before, after, record.inputs, record.in_battle
        )

        self.records.append(record)
        self.turn_history.append(record.render())
        logger.info(f"[Verify] {record.render()}")
        return record

    def check_stuck_pattern(self) -> str | None:
        window = list(self.records)[-self.window:]
        # Turns without a position, or spent in battle, say nothing about walls
        observed = [r for r in window if r.observed_movement is not None]
        if not observed:
            return None
        if any(r.observed_movement for r in observed):
            return None

        counts = Counter(c.button for r in observed for c in r.inputs if c.is_directional)
        if not counts:
            return None
        button, presses = counts.most_common(1)[0]
        if presses < self.threshold:
            return None

        start = observed[0].position_before
        end = observed[-1].position_after
        if start != end:
            return None

        advisory = (
            f"STUCK WARNING: you sent {button.upper()} {presses} times over the last "
            f"{len(window)} turns and your position has not changed from {end}. Something is "
            "blocking that direction. Try a different direction, press B to close any "
            "menu or dialog, or interact with what is in front of you."
        )
        logger.info(f"[Verify] {advisory}")
        return advisory

    def summary(self, limit=5) -> str:
        lines = list(self.turn_history)[-limit:]
        return "\n".join(lines) if lines else "(no completed turns yet)"
