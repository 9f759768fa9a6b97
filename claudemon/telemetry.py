import json
import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Pokemon Red / Blue WRAM addresses
RED_CUR_MAP = 0xD35E
RED_Y_COORD = 0xD361
RED_X_COORD = 0xD362
RED_IS_IN_BATTLE = 0xD057


@dataclass(frozen=True)
class GroundTruth:
    """Externally measured game state, independent of what the model claims."""

    x: int
    y: int
    in_battle: bool = False
    map_id: int | None = None
    frame: int | None = None

    @property
    def position(self) -> tuple[int, int]:
        return (self.x, self.y)

    def describe(self) -> str:
        parts = [f"Position: ({self.x}, {self.y})"]
        if self.map_id is not None:
            parts.append(f"Map: {self.map_id}")
        parts.append("In battle: yes" if self.in_battle else "In battle: no")
        return " | ".join(parts)


def read_pokemon_red(memory) -> GroundTruth | None:
    """Read the player's position from a Game Boy memory view (``pyboy.memory``)."""
    try:
        x = memory[RED_X_COORD]
        y = memory[RED_Y_COORD]
        map_id = memory[RED_CUR_MAP]
        in_battle = memory[RED_IS_IN_BATTLE] != 0
    except (IndexError, KeyError, TypeError) as e:
        logger.warning(f"[Telemetry] RAM read failed: {e}")
        return None
    return GroundTruth(x=x, y=y, in_battle=in_battle, map_id=map_id)


def read_state_file(path) -> GroundTruth | None:
    """Read the JSON snapshot an emulator script writes once a second.

    The file holds ``{"x", "y", "in_battle", "frame"}`` or ``{"error": ...}``
    while the game has not loaded. Anything unreadable counts as unavailable.
    """
    if not path or not os.path.exists(path):
        return None
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.debug(f"[Telemetry] Could not read {path}: {e}")
        return None

    if not isinstance(data, dict) or "error" in data:
        return None
    try:
        return GroundTruth(
            x=int(data["x"]),
            y=int(data["y"]),
            in_battle=bool(data.get("in_battle", False)),
            map_id=data.get("map_id"),
            frame=data.get("frame"),
        )
    except (KeyError, TypeError, ValueError):
        logger.debug(f"[Telemetry] Incomplete state in {path}: {data}")
        return None
