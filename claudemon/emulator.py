import io
import logging
import os
from dataclasses import replace

from PIL import Image
from pyboy import PyBoy

from config import SAVE_STATE_DIR
from claudemon.parser import KEY_NAMES
from claudemon.telemetry import read_pokemon_red, read_state_file

logger = logging.getLogger(__name__)

# The Game Boy has no shoulder buttons
GB_BUTTONS = frozenset({"a", "b", "start", "select", "up", "down", "left", "right"})


class Emulator:
    """PyBoy-backed environment: key actuation, frames, saves, ground truth."""

    def __init__(self, rom_path, headless=True, sound=False, state_file=None, save_dir=SAVE_STATE_DIR):
        self.rom_path = rom_path
        self.headless = headless
        self.sound = sound
        self.state_file = state_file
        self.save_dir = save_dir
        window = "null" if headless else "SDL2"
        try:
            self.pyboy = PyBoy(rom_path, window=window, sound=sound, cgb=True)
        except Exception:
            logger.info("Failed to initialize in CGB mode, falling back to GB mode")
            self.pyboy = PyBoy(rom_path, window=window, sound=sound, cgb=False)
        self.frame_count = 0

    def tick(self, frames=1):
        """Advance the emulator by the specified number of frames."""
        for _ in range(frames):
            self.pyboy.tick()
        self.frame_count += frames

    def initialize(self):
        """Run the boot sequence at full speed.

        Speed stays unthrottled afterwards; the frame loop in
        ``web.agent_runner`` paces ticks to real time without blocking.
        """
        self.pyboy.set_emulation_speed(0)
        self.tick(600)

    # ------------------------------------------------------------------
    # Actuation
    # ------------------------------------------------------------------

    def _button(self, code: int) -> str | None:
        name = KEY_NAMES.get(code)
        if name not in GB_BUTTONS:
            logger.warning(f"[Emulator] Key {name or code} has no Game Boy button, ignoring")
            return None
        return name

    def press_key(self, code: int):
        button = self._button(code)
        if button:
            self.pyboy.button_press(button)

    def release_key(self, code: int):
        button = self._button(code)
        if button:
            self.pyboy.button_release(button)

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    def get_screenshot(self):
        return Image.fromarray(self.pyboy.screen.ndarray)

    def capture_frame(self, upscale=2) -> bytes:
        """Current screen as PNG bytes."""
        screenshot = self.get_screenshot()
        if upscale > 1:
            screenshot = screenshot.resize((screenshot.width * upscale, screenshot.height * upscale))
        buffered = io.BytesIO()
        screenshot.save(buffered, format="PNG")
        return buffered.getvalue()

    # ------------------------------------------------------------------
    # Ground truth
    # ------------------------------------------------------------------

    def read_ground_truth(self):
        """Player position and battle flag, or None when unavailable."""
        if self.state_file:
            return read_state_file(self.state_file)
        truth = read_pokemon_red(self.pyboy.memory)
        if truth is None:
            return None
        return replace(truth, frame=self.frame_count)

    # ------------------------------------------------------------------
    # Save states
    # ------------------------------------------------------------------

    def load_state(self, state_filename):
        """Load a PyBoy .state file into the emulator."""
        try:
            with open(state_filename, "rb") as f:
                self.pyboy.load_state(f)
        except Exception as e:
            logger.error(f"Failed to load save state: {e}")
            raise

    def save_state(self, state_filename):
        try:
            directory = os.path.dirname(state_filename)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(state_filename, "wb") as f:
                self.pyboy.save_state(f)
        except Exception as e:
            logger.error(f"Failed to save state to {state_filename}: {e}")
            raise

    def slot_path(self, slot: int) -> str:
        return os.path.join(self.save_dir, f"slot_{slot}.state")

    def save_to_slot(self, slot: int) -> str:
        path = self.slot_path(slot)
        self.save_state(path)
        logger.info(f"[Emulator] Saved state to slot {slot} ({path})")
        return path

    def stop(self):
        self.pyboy.stop()
