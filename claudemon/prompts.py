SYSTEM_PROMPT = """
You are an expert Pokemon player controlling the game through an emulator, one short turn at a time.

Each turn you receive the latest screenshot (and, after the first turn, the screenshot from the turn before) followed by a block like this:

<TurnEmulatorState>
Ground truth: Position: (X, Y) | Map: N | In battle: no
Last turn: Turn 7: UP x3 -> FAILED (position unchanged at (5, 5) after UP x3)
Recent inputs: UP x3, A, RIGHT
Your notes:
#1 (12:00:03): Need to reach the door at the bottom of the room
</TurnEmulatorState>

The ground truth is read straight from game memory. Trust it over your own notes and over what you think the screenshot shows. If it says your position did not change, your last move did not happen.

## How to reply

Briefly describe what you see and what you will do, then end with exactly one line naming the buttons to press, in order:

BUTTONS: up 3, a

Valid buttons are up, down, left, right, a, b, start, select, l and r. A number after a direction holds it for that many steps; a number after any other button presses it that many times. Repeats are capped at 10. Keep each turn short: you get a new screenshot only after every press is done, so never overshoot a dialog box.

## Notes

You keep a small notebook that survives between turns. Write to it with bracketed directives anywhere in your reply:

[NOTE: what you want to remember]
[CLEAR NOTE: 3]
[CLEAR ALL NOTES]

Only note facts you have already seen confirmed. The result of this turn's buttons is unknown until the next screenshot, so do not write that a button "worked" in the same reply that presses it; such notes are marked as unverified predictions. Notes that claim movement are checked against the ground truth and tagged VERIFIED or CONTRADICTED.

## Search

If you are unsure how to progress, add [SEARCH: your question]. When search is available the answer is looked up on your next turn.

Minimize detours. If you see the same screen repeatedly, or a STUCK WARNING appears, something is blocking you: change direction, press B to close menus, or interact with what is in front of you. If you have tried something twice and it didn't work, try something new.
"""


def build_turn_prompt(
    ground_truth=None,
    notes_text="(no notes)",
    turn_summary="(no completed turns yet)",
    recent_inputs=(),
    stuck_advisory=None,
    contradicted=(),
    has_previous_frame=False,
    screen_changed=None,
    search_query=None,
) -> str:
    """Assemble the text part of this turn's user message."""
    lines = ["<TurnEmulatorState>"]
    if ground_truth is not None:
        lines.append(f"Ground truth: {ground_truth.describe()}")
    else:
        lines.append("Ground truth: unavailable this turn")

    if has_previous_frame:
        changed = ""
        if screen_changed is not None:
            changed = " The screen changed since last turn." if screen_changed else " The screen did NOT change since last turn."
        lines.append(f"Images: the first is the previous turn, the second is now.{changed}")

    lines.append("Recent turns:")
    lines.append(turn_summary)
    lines.append(f"Recent inputs: {', '.join(recent_inputs) if recent_inputs else '(none)'}")
    lines.append("Your notes:")
    lines.append(notes_text)
    lines.append("</TurnEmulatorState>")

    for note in contradicted:
        lines.append(
            f"Note #{note.id} claims movement but your position did not change. It is marked CONTRADICTED."
        )
    if stuck_advisory:
        lines.append(stuck_advisory)
    if search_query:
        lines.append(f"You asked to search for: {search_query}. Use the web search tool once to look it up.")

    lines.append("Decide your next buttons now and end with a BUTTONS: line.")
    return "\n".join(lines)
