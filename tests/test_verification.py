from claudemon.parser import Command
from claudemon.telemetry import GroundTruth
from claudemon.verification import TurnResult, TurnVerifier, score_turn


def test_score_failed_when_position_unchanged():
    result, reason = score_turn((5, 5), (5, 5), [Command("down")])
    assert result is TurnResult.FAILED
    assert "unchanged" in reason


def test_score_success_when_position_changed():
    result, _ = score_turn((5, 5), (5, 6), [Command("down")])
    assert result is TurnResult.SUCCESS


def test_score_unknown_without_direction_or_ground_truth():
    assert score_turn((5, 5), (5, 5), [Command("a")])[0] is TurnResult.UNKNOWN
    assert score_turn(None, (5, 5), [Command("up")])[0] is TurnResult.UNKNOWN
    assert score_turn((5, 5), None, [Command("up")])[0] is TurnResult.UNKNOWN
    assert score_turn((5, 5), (9, 9), [Command("up")], in_battle=True)[0] is TurnResult.UNKNOWN


def _run_turn(verifier, commands, before, after=None):
    verifier.record_before(GroundTruth(*before) if before else None)
    verifier.record_commands(commands)
    if after is not None:
        return verifier.record_after(GroundTruth(*after))
    return None


def test_after_position_comes_from_next_turns_sample():
    verifier = TurnVerifier()
    verifier.record_before(GroundTruth(5, 5))
    verifier.record_commands([Command("down")])
    assert verifier.pending is not None

    finished = verifier.record_before(GroundTruth(5, 6))

    assert finished.turn_number == 1
    assert finished.result is TurnResult.SUCCESS
    assert finished.position_before == (5, 5)
    assert finished.position_after == (5, 6)
    assert finished.observed_movement is True
    assert verifier.pending is None
    assert "SUCCESS" in verifier.summary()


def test_no_pending_record_means_nothing_finished():
    verifier = TurnVerifier()
    assert verifier.record_before(GroundTruth(1, 1)) is None


def test_missing_ground_truth_is_unknown_movement():
    verifier = TurnVerifier()
    verifier.record_before(None)
    verifier.record_commands([Command("up")])
    record = verifier.record_before(GroundTruth(1, 1))
    assert record.had_position is False
    assert record.observed_movement is None
    assert record.result is TurnResult.UNKNOWN


def test_stuck_after_four_ups_in_three_turns():
    verifier = TurnVerifier(window=3, threshold=4)
    _run_turn(verifier, [Command("up"), Command("up")], (5, 5), (5, 5))
    _run_turn(verifier, [Command("up")], (5, 5), (5, 5))
    assert verifier.check_stuck_pattern() is None

    _run_turn(verifier, [Command("up"), Command("a")], (5, 5), (5, 5))
    advisory = verifier.check_stuck_pattern()
    assert advisory
    assert "UP" in advisory


def test_three_ups_is_not_stuck():
    verifier = TurnVerifier(window=3, threshold=4)
    for _ in range(3):
        _run_turn(verifier, [Command("up")], (5, 5), (5, 5))
    assert verifier.check_stuck_pattern() is None


def test_movement_suppresses_stuck_advisory():
    verifier = TurnVerifier(window=3, threshold=4)
    _run_turn(verifier, [Command("up"), Command("up")], (5, 5), (5, 5))
    _run_turn(verifier, [Command("up")], (5, 5), (5, 4))
    _run_turn(verifier, [Command("up")], (5, 4), (5, 4))
    assert verifier.check_stuck_pattern() is None


def test_only_recent_window_counts():
    verifier = TurnVerifier(window=3, threshold=4)
    for _ in range(4):
        _run_turn(verifier, [Command("up")], (5, 5), (5, 5))
    for _ in range(3):
        _run_turn(verifier, [Command("left")], (5, 5), (5, 5))
    assert verifier.check_stuck_pattern() is None


def test_records_are_bounded():
    verifier = TurnVerifier()
    for _ in range(15):
        _run_turn(verifier, [Command("a")], (1, 1), (1, 1))
    assert len(verifier.records) == 10
    assert verifier.records[-1].turn_number == 15


def test_no_stuck_advisory_without_ground_truth():
    verifier = TurnVerifier(window=3, threshold=4)
    for commands in ([Command("up"), Command("up")], [Command("up")], [Command("up")]):
        verifier.record_before(None)
        verifier.record_commands(commands)
    verifier.record_before(None)
    assert all(r.observed_movement is None for r in verifier.records)
    assert verifier.check_stuck_pattern() is None


def test_no_stuck_advisory_in_battle():
    verifier = TurnVerifier(window=3, threshold=4)
    for commands in ([Command("up"), Command("up")], [Command("up")], [Command("up")]):
        _run_turn(verifier, commands, (5, 5, True), (5, 5, True))
    assert verifier.check_stuck_pattern() is None


def test_only_turns_with_a_position_count_towards_stuck():
    verifier = TurnVerifier(window=3, threshold=4)
    _run_turn(verifier, [Command("up"), Command("up")], (5, 5), (5, 5))
    _run_turn(verifier, [Command("up")], (5, 5, True), (5, 5, True))
    _run_turn(verifier, [Command("up")], (5, 5), (5, 5))
    # Three UPs were observed against the wall; the battle turn's UP is not one
    assert verifier.check_stuck_pattern() is None
