import pytest

from claudemon import emulator as emulator_module
from claudemon.emulator import Emulator
from claudemon.parser import KEY_CODES
from claudemon.telemetry import RED_CUR_MAP, RED_IS_IN_BATTLE, RED_X_COORD, RED_Y_COORD


class _FakePyBoy:
    fail_cgb = False

    def __init__(self, rom_path, window="null", sound=False, cgb=True):
        if cgb and self.fail_cgb:
            raise RuntimeError("not a CGB rom")
        self.cgb = cgb
        self.buttons = []
        self.ticks = 0
        self.memory = {RED_X_COORD: 4, RED_Y_COORD: 7, RED_CUR_MAP: 0, RED_IS_IN_BATTLE: 0}

    def button_press(self, name):
        self.buttons.append(("press", name))

    def button_release(self, name):
        self.buttons.append(("release", name))

    def tick(self):
        self.ticks += 1

    def set_emulation_speed(self, speed):
        self.speed = speed

    def save_state(self, f):
        f.write(b"state")

    def load_state(self, f):
        self.loaded = f.read()


@pytest.fixture
def emulator(monkeypatch, tmp_path):
    monkeypatch.setattr(emulator_module, "PyBoy", _FakePyBoy)
    return Emulator("pokemon.gb", save_dir=str(tmp_path / "saves"))


def test_keys_map_to_game_boy_buttons(emulator):
    emulator.press_key(KEY_CODES["up"])
    emulator.release_key(KEY_CODES["up"])
    emulator.press_key(KEY_CODES["start"])
    assert emulator.pyboy.buttons == [("press", "up"), ("release", "up"), ("press", "start")]


def test_shoulder_buttons_are_ignored(emulator):
    emulator.press_key(KEY_CODES["l"])
    emulator.release_key(KEY_CODES["r"])
    assert emulator.pyboy.buttons == []


def test_ground_truth_from_ram(emulator):
    emulator.tick(3)
    truth = emulator.read_ground_truth()
    assert truth.position == (4, 7)
    assert truth.frame == 3
    assert not truth.in_battle


def test_save_to_slot(emulator, tmp_path):
    path = emulator.save_to_slot(9)
    assert path == str(tmp_path / "saves" / "slot_9.state")
    with open(path, "rb") as f:
        assert f.read() == b"state"

    emulator.load_state(path)
    assert emulator.pyboy.loaded == b"state"


def test_falls_back_to_gb_mode(monkeypatch, tmp_path):
    monkeypatch.setattr(_FakePyBoy, "fail_cgb", True)
    monkeypatch.setattr(emulator_module, "PyBoy", _FakePyBoy)
    assert Emulator("pokemon.gb").pyboy.cgb is False
