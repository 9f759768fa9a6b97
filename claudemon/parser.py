"""Turn a free-text model reply into button commands and memory directives.

The reply is the wire format, so everything here is total: any string parses,
and the command list is never empty.

Action grammar, in order of preference:

1. the first line that starts with an action keyword (``BUTTONS: up 3, a``),
2. otherwise the whole reply,
3. otherwise the first button name found inside any word (``upward`` -> up),
4. otherwise one press of the default button.

Memory grammar: ``[NOTE: text]``, ``[CLEAR NOTE: id]``, ``[CLEAR ALL NOTES]``
and ``[SEARCH: query]``. Directives are removed before the reply is scanned
for buttons so a note such as ``[NOTE: start of game]`` never presses START.
"""
import logging
from dataclasses import dataclass, field

from config import DEFAULT_BUTTON, MAX_REPEAT

logger = logging.getLogger(__name__)

BUTTONS = ("up", "down", "left", "right", "a", "b", "l", "r", "start", "select")
DIRECTIONS = frozenset({"up", "down", "left", "right"})

# GBA key ids, matching the emulator's key bitfield order
KEY_CODES = {
    "a": 0,
    "b": 1,
    "select": 2,
    "start": 3,
    "right": 4,
    "left": 5,
    "up": 6,
    "down": 7,
    "r": 8,
    "l": 9,
}
KEY_NAMES = {code: name for name, code in KEY_CODES.items()}

ACTION_KEYWORDS = ("buttons", "button", "inputs", "input", "actions", "action", "press", "keys")

# Single letters show up inside nearly every word, so only the longer names
# take part in the substring fallback.
SUBSTRING_BUTTONS = tuple(b for b in BUTTONS if len(b) > 1)

# Wording that marks a note as claiming an outcome. Heuristic, tune freely.
PREDICTION_OUTCOME_PHRASES = (
    "worked",
    "works",
    "success",
    "succeeded",
    "successful",
    "successfully",
    "failed",
    "fails",
    "didn't work",
    "did not work",
    "doesn't work",
    "no effect",
    "nothing happened",
    "blocked",
    "moved",
    "opened",
    "confirmed",
)
PREDICTION_ANNOTATION = " (unverified prediction)"

NOTE = "note"
CLEAR_NOTE = "clear_note"
CLEAR_ALL = "clear_all"
SEARCH = "search"


@dataclass
class Command:
    button: str
    count: int = 1

    @property
    def is_directional(self) -> bool:
        return self.button in DIRECTIONS

    @property
    def key_code(self) -> int:
        return KEY_CODES[self.button]

    def __str__(self):
        if self.count == 1:
            return self.button.upper()
        return f"{self.button.upper()} x{self.count}"


@dataclass
class MemoryDirective:
    kind: str
    text: str = ""
    note_id: int | None = None
    prediction: bool = False


@dataclass
class ParsedResponse:
    commands: list[Command]
    memory: list[MemoryDirective] = field(default_factory=list)
    search_query: str | None = None
    # Which grammar tier produced the commands: line, text, substring, default
    source: str = "line"

    @property
    def used_fallback(self) -> bool:
        return self.source in ("substring", "default")


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

def _words(text: str) -> list[str]:
    """Split on anything that is not an ASCII letter or digit."""
    words, current = [], []
    for ch in text:
        if ch.isascii() and ch.isalnum():
            current.append(ch)
        elif current:
            words.append("".join(current))
            current = []
    if current:
        words.append("".join(current))
    return words


def _normalize(text: str) -> str:
    return " " + " ".join(w.lower() for w in _words(text)) + " "


def _repeat_count(word: str, max_repeat: int) -> int | None:
    if word.startswith("x") and word[1:].isdigit():
        word = word[1:]
    if not word.isdigit():
        return None
    return max(1, min(int(word), max_repeat))


def tokenize_commands(text: str, max_repeat: int = MAX_REPEAT) -> list[Command]:
    """Return every ``button [count]`` pair in text order."""
    words = [w.lower() for w in _words(text)]
    commands = []
    i = 0
    while i < len(words):
        word = words[i]
        if word in BUTTONS:
            count = 1
            if i + 1 < len(words):
                repeat = _repeat_count(words[i + 1], max_repeat)
                if repeat is not None:
                    count = repeat
                    i += 1
            commands.append(Command(word, count))
        i += 1
    return commands


def find_action_line(text: str) -> str | None:
    """Return what follows the first ``KEYWORD:`` line, or None."""
    for line in text.splitlines():
        stripped = line.strip().lstrip("*-#>` ")
        head, sep, rest = stripped.partition(":")
        if sep and head.strip().strip("*").lower() in ACTION_KEYWORDS:
            return rest.strip("*` \t")
    return None


def _first_button_substring(text: str) -> str | None:
    lowered = text.lower()
    best = None
    for button in SUBSTRING_BUTTONS:
        idx = lowered.find(button)
        if idx >= 0 and (best is None or idx < best[0]):
            best = (idx, button)
    return best[1] if best else None


# ---------------------------------------------------------------------------
# Bracketed directives
# ---------------------------------------------------------------------------

def _classify_directive(inner: str) -> MemoryDirective | None:
    head, sep, rest = inner.strip().partition(":")
    key = " ".join(head.split()).upper()
    rest = rest.strip()

    if key == "CLEAR ALL NOTES":
        return MemoryDirective(CLEAR_ALL)
    if not sep:
        return None
    if key == "NOTE":
        return MemoryDirective(NOTE, text=rest)
    if key == "CLEAR NOTE":
        raw_id = rest.lstrip("#").strip()
        note_id = int(raw_id) if raw_id.isdigit() else None
        return MemoryDirective(CLEAR_NOTE, text=rest, note_id=note_id)
    if key == "SEARCH":
        return MemoryDirective(SEARCH, text=rest)
    return None


def extract_directives(text: str) -> tuple[str, list[MemoryDirective]]:
    """Pull recognised ``[...]`` directives out of text.

    Returns the text with those directives removed, and the directives in the
    order they appeared. Brackets that are not directives are left in place.
    Brackets nest, so ``[NOTE: potion [x2] in bag]`` is one note, and an
    unmatched ``[`` does not swallow a directive that follows it.
    """
    spans = []
    opened = []
    for i, ch in enumerate(text):
        if ch == "[":
            opened.append(i)
        elif ch == "]" and opened:
            start = opened.pop()
            directive = _classify_directive(text[start + 1:i])
            if directive is None:
                continue
            # An enclosing directive absorbs any directive inside it
            while spans and spans[-1][0] > start:
                spans.pop()
            spans.append((start, i, directive))

    kept, directives = [], []
    pos = 0
    for start, end, directive in spans:
        kept.append(text[pos:start])
        kept.append(" ")
        directives.append(directive)
        pos = end + 1
    kept.append(text[pos:])
    return "".join(kept), directives


def is_unverified_prediction(note_text: str, commands: list[Command]) -> bool:
    """True when a note claims an outcome for a button pressed this very turn.

    Single-letter buttons only count when written in capitals ("pressed A"),
    otherwise every English "a" would match.
    """
    if not commands:
        return False
    buttons = {c.button for c in commands}
    mentioned = any(
        w.lower() in buttons and (len(w) > 1 or w.isupper())
        for w in _words(note_text)
    )
    if not mentioned:
        return False
    normalized = _normalize(note_text)
    return any(_normalize(phrase) in normalized for phrase in PREDICTION_OUTCOME_PHRASES)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def parse_response(text, max_repeat=MAX_REPEAT, default_button=DEFAULT_BUTTON) -> ParsedResponse:
    """Parse one model reply. Never raises, never returns an empty command list."""
    text = text or ""
    plain, directives = extract_directives(text)

    action_line = find_action_line(plain)
    if action_line is not None:
        commands = tokenize_commands(action_line, max_repeat)
        source = "line"
    else:
        commands = tokenize_commands(plain, max_repeat)
        source = "text"

    if not commands:
        button = _first_button_substring(plain)
        if button:
            commands = [Command(button)]
            source = "substring"
        else:
            commands = [Command(default_button)]
            source = "default"
        logger.info(f"[Parser] No button tokens found, falling back to {commands[0]} ({source})")

    clears, notes = [], []
    search_query = None
    for directive in directives:
        if directive.kind == SEARCH:
            if search_query is None and directive.text:
                search_query = directive.text
        elif directive.kind == CLEAR_ALL:
            clears.append(directive)
        elif directive.kind == CLEAR_NOTE:
            if directive.note_id is None:
                logger.warning(f"[Parser] Ignoring CLEAR NOTE with bad id: {directive.text!r}")
                continue
            clears.append(directive)
        elif directive.kind == NOTE:
            if not directive.text:
                continue
            if is_unverified_prediction(directive.text, commands):
                directive.prediction = True
                directive.text += PREDICTION_ANNOTATION
            notes.append(directive)

    return ParsedResponse(
        commands=commands,
        memory=clears + notes,
        search_query=search_query,
        source=source,
    )
