import json

from claudemon.telemetry import (
    RED_CUR_MAP,
    RED_IS_IN_BATTLE,
    RED_X_COORD,
    RED_Y_COORD,
    GroundTruth,
    read_pokemon_red,
    read_state_file,
)


def test_read_pokemon_red_from_memory():
    memory = {RED_X_COORD: 3, RED_Y_COORD: 6, RED_CUR_MAP: 38, RED_IS_IN_BATTLE: 0}
    truth = read_pokemon_red(memory)
    assert truth == GroundTruth(x=3, y=6, in_battle=False, map_id=38)
    assert truth.position == (3, 6)


def test_battle_flag():
    memory = {RED_X_COORD: 3, RED_Y_COORD: 6, RED_CUR_MAP: 38, RED_IS_IN_BATTLE: 1}
    assert read_pokemon_red(memory).in_battle


def test_unreadable_memory_is_unavailable():
    assert read_pokemon_red({}) is None


def test_state_file(tmp_path):
    path = tmp_path / "game_state.json"
    path.write_text(json.dumps({"x": 10, "y": 4, "in_battle": False, "frame": 1200}))
    assert read_state_file(str(path)) == GroundTruth(x=10, y=4, in_battle=False, frame=1200)


def test_state_file_error_and_garbage(tmp_path):
    path = tmp_path / "game_state.json"
    path.write_text(json.dumps({"error": "game not loaded"}))
    assert read_state_file(str(path)) is None
    path.write_text("{half")
    assert read_state_file(str(path)) is None
    path.write_text(json.dumps({"x": 1}))
    assert read_state_file(str(path)) is None
    assert read_state_file(str(tmp_path / "missing.json")) is None
    assert read_state_file(None) is None


def test_describe():
    assert GroundTruth(1, 2, map_id=0).describe() == "Position: (1, 2) | Map: 0 | In battle: no"
