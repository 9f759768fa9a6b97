from claudemon.parser import (
    CLEAR_ALL,
    CLEAR_NOTE,
    NOTE,
    PREDICTION_ANNOTATION,
    Command,
    extract_directives,
    find_action_line,
    is_unverified_prediction,
    parse_response,
    tokenize_commands,
)


def test_buttons_line_with_repeat():
    parsed = parse_response("I see a long corridor.\nBUTTONS: up 3")
    assert parsed.commands == [Command("up", 3)]
    assert parsed.source == "line"


def test_free_text_repeat():
    parsed = parse_response("up 3")
    assert parsed.commands == [Command("up", 3)]
    assert parsed.source == "text"


def test_repeat_is_clamped():
    assert parse_response("BUTTONS: up 99").commands == [Command("up", 10)]
    assert parse_response("BUTTONS: left 0").commands == [Command("left", 1)]
    assert parse_response("BUTTONS: down 50", max_repeat=4).commands == [Command("down", 4)]


def test_order_and_x_counts():
    parsed = parse_response("Press: RIGHT x2, a, Down 4, start")
    assert parsed.commands == [Command("right", 2), Command("a"), Command("down", 4), Command("start")]


def test_action_line_wins_over_prose():
    text = "Going left would be a mistake.\n**BUTTONS:** right 2"
    assert parse_response(text).commands == [Command("right", 2)]


def test_only_first_action_line_is_used():
    assert find_action_line("Inputs: up\nButtons: down") == "up"
    assert find_action_line("nothing here") is None


def test_substring_fallback():
    parsed = parse_response("Heading upward toward the exit")
    assert parsed.commands == [Command("up")]
    assert parsed.source == "substring"


def test_no_button_anywhere_gives_default():
    parsed = parse_response("Hmm, let me think about this.")
    assert parsed.commands == [Command("a")]
    assert parsed.used_fallback
    assert parse_response("").commands == [Command("a")]
    assert parse_response(None).commands == [Command("a")]


def test_default_button_is_configurable():
    assert parse_response("...", default_button="b").commands == [Command("b")]


def test_memory_directives():
    parsed = parse_response(
        "[note: Pallet town is south]\n[CLEAR NOTE: 2]\n[NOTE: Mom is downstairs]\n[clear all notes]\nBUTTONS: down"
    )
    kinds = [d.kind for d in parsed.memory]
    # Clears first, in order, then notes in order
    assert kinds == [CLEAR_NOTE, CLEAR_ALL, NOTE, NOTE]
    assert parsed.memory[0].note_id == 2
    assert [d.text for d in parsed.memory[2:]] == ["Pallet town is south", "Mom is downstairs"]


def test_directives_do_not_press_buttons():
    parsed = parse_response("INPUTS: a\n[NOTE: start of game]")
    assert parsed.commands == [Command("a")]
    assert len(parsed.memory) == 1
    assert parsed.memory[0].text == "start of game"


def test_clear_note_with_bad_id_is_ignored():
    parsed = parse_response("[CLEAR NOTE: first one] BUTTONS: b")
    assert parsed.memory == []


def test_search_first_occurrence_only():
    parsed = parse_response("[SEARCH: where is the old rod] [SEARCH: second] BUTTONS: a")
    assert parsed.search_query == "where is the old rod"


def test_non_directive_brackets_are_kept():
    plain, directives = extract_directives("[left side] looks blocked")
    assert directives == []
    assert "[left side]" in plain


def test_unverified_prediction_is_annotated():
    parsed = parse_response("BUTTONS: up 2\n[NOTE: pressing up worked, now in the hall]")
    note = parsed.memory[0]
    assert note.prediction
    assert note.text.endswith(PREDICTION_ANNOTATION)


def test_prediction_needs_a_button_from_this_turn():
    assert not is_unverified_prediction("pressing up worked", [Command("down")])
    assert not is_unverified_prediction("the door opened", [Command("up")])
    # Lowercase single letters are just English
    assert not is_unverified_prediction("a door opened", [Command("a")])
    assert is_unverified_prediction("pressing A opened the door", [Command("a")])


def test_tokenizer_ignores_words_containing_buttons():
    assert tokenize_commands("update the map, then go right") == [Command("right")]


def test_nested_brackets_stay_inside_note():
    parsed = parse_response("[NOTE: potion [x2] in bag] BUTTONS: b")
    assert [d.text for d in parsed.memory] == ["potion [x2] in bag"]
    assert parsed.commands == [Command("b")]


def test_unmatched_bracket_does_not_hide_directive():
    plain, directives = extract_directives("[left side [NOTE: ledge here] BUTTONS: up")
    assert [(d.kind, d.text) for d in directives] == [(NOTE, "ledge here")]
    assert "ledge" not in plain
    assert "[left side" in plain
