import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from config import MAX_NOTES

logger = logging.getLogger(__name__)

# Wording that makes a note a claim about the player's position
MOVEMENT_CLAIM_WORDS = (
    "moved",
    "walked",
    "went",
    "entered",
    "exited",
    "arrived",
    "reached",
    "climbed",
    "passed",
    "now in",
    "now at",
    "made it",
    "got to",
    "got past",
)


class VerificationStatus(str, Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    CONTRADICTED = "contradicted"


@dataclass
class Note:
    id: int
    timestamp: str
    content: str
    status: VerificationStatus = VerificationStatus.UNVERIFIED
    # Set when the note arrives, cleared at the start of the next turn
    written_this_turn: bool = False

    def render(self) -> str:
        tag = "" if self.status is VerificationStatus.UNVERIFIED else f" [{self.status.value.upper()}]"
        return f"#{self.id} ({self.timestamp}){tag}: {self.content}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "content": self.content,
            "verification_status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Note":
        try:
            status = VerificationStatus(data.get("verification_status", "unverified"))
        except ValueError:
            status = VerificationStatus.UNVERIFIED
        return cls(
            id=int(data["id"]),
            timestamp=str(data.get("timestamp", "")),
            content=str(data["content"]),
            status=status,
        )


def makes_movement_claim(content: str) -> bool:
    lowered = content.lower()
    return any(word in lowered for word in MOVEMENT_CLAIM_WORDS)


class NoteStore:
    """The model's notes: a bounded FIFO with stable, externally visible ids."""

    def __init__(self, max_notes=MAX_NOTES, notes=None, next_id=1):
        self.max_notes = max_notes
        self.notes: list[Note] = list(notes or [])
        self.next_id = next_id

    def __len__(self):
        return len(self.notes)

    def __iter__(self):
        return iter(self.notes)

    def get(self, note_id: int) -> Note | None:
        for note in self.notes:
            if note.id == note_id:
                return note
        return None

    def add(self, content: str, timestamp: str | None = None) -> Note:
        note = Note(
            id=self.next_id,
            timestamp=timestamp or datetime.now().strftime("%H:%M:%S"),
            content=content,
            written_this_turn=True,
        )
        self.next_id += 1
        self.notes.append(note)
        while len(self.notes) > self.max_notes:
            evicted = self.notes.pop(0)
            logger.info(f"[Notes] Evicted oldest note #{evicted.id}")
        return note

    def clear(self, note_id: int) -> bool:
        for i, note in enumerate(self.notes):
            if note.id == note_id:
                del self.notes[i]
                return True
        logger.info(f"[Notes] CLEAR NOTE for unknown id #{note_id}")
        return False

    def clear_all(self):
        self.notes.clear()
        self.next_id = 1

    # ------------------------------------------------------------------
    # Id compaction
    # ------------------------------------------------------------------

    @property
    def needs_renumber(self) -> bool:
        return self.next_id > 2 * self.max_notes

    def renumber(self):
        """Reassign ids 1..count in order and reset the counter to count + 1."""
        for i, note in enumerate(self.notes, start=1):
            note.id = i
        self.next_id = len(self.notes) + 1
        logger.info(f"[Notes] Renumbered {len(self.notes)} notes")

    # ------------------------------------------------------------------
    # Ground truth
    # ------------------------------------------------------------------

    def validate_against_ground_truth(self, position_changed: bool | None) -> list[Note]:
        """Check last turn's movement claims against what telemetry observed.

        ``position_changed`` is None when there was no usable ground truth for
        the last turn; notes are then left alone. Returns the notes whose
        status changed. Always clears the written-this-turn flags.
        """
        written = [n for n in self.notes if n.written_this_turn]
        for note in self.notes:
            note.written_this_turn = False

        if position_changed is None:
            return []

        changed = []
        for note in written:
            if note.status is not VerificationStatus.UNVERIFIED:
                continue
            if not makes_movement_claim(note.content):
                continue
            if position_changed:
                note.status = VerificationStatus.VERIFIED
            else:
                note.status = VerificationStatus.CONTRADICTED
                logger.info(f"[Notes] Note #{note.id} contradicted: position did not change")
            changed.append(note)
        return changed

    def render(self) -> str:
        if not self.notes:
            return "(no notes)"
        return "\n".join(note.render() for note in self.notes)
