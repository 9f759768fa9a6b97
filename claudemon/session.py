"""The single owned Session and its JSON persistence."""
import json
import logging
import os
from collections import deque
from dataclasses import dataclass, field

from config import (
    DEFAULT_MODEL,
    MAX_HISTORY,
    MAX_NOTES,
    MAX_RECENT_INPUTS,
    MAX_TURN_RECORDS,
    MODELS,
)
from claudemon.lifecycle import BackoffState
from claudemon.memory import Note, NoteStore

logger = logging.getLogger(__name__)

ROLES = ("user", "assistant")


@dataclass
class Message:
    role: str
    text: str


class ConversationHistory:
    """Bounded FIFO of role-tagged messages, oldest evicted first."""

    def __init__(self, max_messages=MAX_HISTORY, messages=None):
        self.messages: deque[Message] = deque(messages or [], maxlen=max_messages)

    def __len__(self):
        return len(self.messages)

    def __iter__(self):
        return iter(self.messages)

    def add(self, role: str, text: str):
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role}")
        self.messages.append(Message(role, text))

    def clear(self):
        self.messages.clear()

    def as_payload(self) -> list[dict]:
        """Messages in endpoint form. The endpoint wants a user turn first."""
        messages = list(self.messages)
        while messages and messages[0].role != "user":
            messages.pop(0)
        return [{"role": m.role, "content": m.text} for m in messages]


@dataclass
class Session:
    model_choice: str = DEFAULT_MODEL
    thinking_enabled: bool = False
    search_enabled: bool = False
    api_credential: str = ""
    history: ConversationHistory = field(default_factory=ConversationHistory)
    notes: NoteStore = field(default_factory=NoteStore)
    recent_inputs: deque = field(default_factory=lambda: deque(maxlen=MAX_RECENT_INPUTS))
    turn_history: deque = field(default_factory=lambda: deque(maxlen=MAX_TURN_RECORDS))
    turn_records: deque = field(default_factory=lambda: deque(maxlen=MAX_TURN_RECORDS))
    backoff: BackoffState = field(default_factory=BackoffState)

    @property
    def model_id(self) -> str:
        return MODELS.get(self.model_choice, MODELS[DEFAULT_MODEL])

    @property
    def next_note_id(self) -> int:
        return self.notes.next_id

    @property
    def has_credential(self) -> bool:
        return bool(self.api_credential)

    def to_dict(self) -> dict:
        return {
            "model": self.model_choice,
            "api_key": self.api_credential,
            "thinking_enabled": self.thinking_enabled,
            "search_enabled": self.search_enabled,
            "history": [{"role": m.role, "text": m.text} for m in self.history],
            "notes": [n.to_dict() for n in self.notes],
            "next_note_id": self.notes.next_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        session = cls()
        model = data.get("model", DEFAULT_MODEL)
        if model in MODELS:
            session.model_choice = model
        else:
            logger.warning(f"[Session] Unknown model '{model}', using {DEFAULT_MODEL}")
        session.api_credential = str(data.get("api_key") or "")
        session.thinking_enabled = bool(data.get("thinking_enabled", False))
        session.search_enabled = bool(data.get("search_enabled", False))

        for entry in data.get("history", []):
            if entry.get("role") in ROLES and isinstance(entry.get("text"), str):
                session.history.add(entry["role"], entry["text"])

        notes = [Note.from_dict(n) for n in data.get("notes", [])][-MAX_NOTES:]
        next_id = int(data.get("next_note_id", 1))
        next_id = max([next_id] + [n.id + 1 for n in notes])
        session.notes = NoteStore(notes=notes, next_id=next_id)
        return session


def load_session(path) -> Session:
    """Load the session document at path. Missing or malformed -> defaults."""
    if not path or not os.path.exists(path):
        logger.info(f"[Session] No session file at {path}, starting fresh")
        return Session()
    try:
        with open(path) as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("session document is not an object")
        session = Session.from_dict(data)
    except (OSError, ValueError, TypeError, KeyError, AttributeError) as e:
        logger.warning(f"[Session] Could not load {path} ({e}), starting fresh")
        return Session()
    logger.info(
        f"[Session] Loaded {len(session.history)} messages and {len(session.notes)} notes from {path}"
    )
    return session


def save_session(session: Session, path):
    """Write the session document atomically (temp file + rename)."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w") as f:
        json.dump(session.to_dict(), f, indent=2)
    os.replace(tmp_path, path)
    # The document holds the API key
    os.chmod(path, 0o600)
