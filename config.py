import os

# Configuration for the application
MODELS = {
    "opus": "claude-opus-4-5",
    "sonnet": "claude-sonnet-4-5",
    "haiku": "claude-haiku-4-5",
}
DEFAULT_MODEL = "sonnet"
TEMPERATURE = 1.0
MAX_TOKENS = 1024
# Extended thinking needs max_tokens above the budget, so the budget is added
# on top of MAX_TOKENS when thinking is on.
THINKING_BUDGET_TOKENS = 2048
API_VERSION = "2023-06-01"

# Turn loop timing
LOOP_INTERVAL_MS = 2000
REQUEST_TIMEOUT_MS = 30000
BACKOFF_BASE_MS = 2000
BACKOFF_MAX_MS = 30000
MAX_CONSECUTIVE_ERRORS = 3

# Input pacing. A directional hold of N steps lasts N * DIRECTION_HOLD_MS.
DIRECTION_HOLD_MS = 250
BUTTON_HOLD_MS = 100
MAX_REPEAT = 10
DEFAULT_BUTTON = "a"

# Working-set caps
MAX_HISTORY = 10
MAX_NOTES = 10
MAX_TURN_RECORDS = 10
MAX_RECENT_INPUTS = 20

# Stuck detection: the same direction this many times within the last
# STUCK_WINDOW_TURNS scored turns, with no movement, triggers an advisory.
STUCK_WINDOW_TURNS = 3
STUCK_THRESHOLD = 4

# Where the emulator is saved when the loop halts on a critical error
CRITICAL_SAVE_SLOT = 9

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
SESSION_FILE = os.path.join(BASE_DIR, "claude_session.json")
SAVE_STATE_DIR = os.path.join(BASE_DIR, "saves")
