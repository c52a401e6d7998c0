"""Tool-call transcript validation, repair and bounding."""

from __future__ import annotations

from whatsbot.storage.models import AssistantTurn, ToolTurn, Turn, UserTurn


def first_invalid_index(turns: list[Turn]) -> int | None:
    """Index of the first turn that breaks tool-call pairing, or None.

    An assistant turn with N tool calls must be followed immediately by N
    tool turns whose ids equal the call ids as a set. A tool turn that is not
    part of such a block is invalid on its own.
    """
    i = 0
    while i < len(turns):
        turn = turns[i]
        if isinstance(turn, AssistantTurn) and turn.tool_calls:
            expected = [c.id for c in turn.tool_calls]
            block = turns[i + 1 : i + 1 + len(expected)]
            if len(set(expected)) != len(expected) or len(block) != len(expected):
                return i
            if not all(isinstance(t, ToolTurn) for t in block):
                return i
            if {t.tool_call_id for t in block} != set(expected):
                return i
            i += 1 + len(expected)
            continue
        if isinstance(turn, ToolTurn):
            return i
        i += 1
    return None


def repair(turns: list[Turn], current_input: UserTurn | None = None) -> tuple[list[Turn], bool]:
    """Truncate at the first invalid turn; re-append the current user input if it was cut.

    Returns the repaired list and whether anything changed.
    """
    index = first_invalid_index(turns)
    if index is None:
        return list(turns), False
    repaired = list(turns[:index])
    if current_input is not None and current_input in turns[index:]:
        repaired.append(current_input)
    return repaired, True


def bound(turns: list[Turn], max_user: int, max_assistant: int) -> list[Turn]:
    """Keep the newest turns within the user/assistant limits, on a valid boundary."""
    users = assistants = 0
    start = 0
    for i in range(len(turns) - 1, -1, -1):
        turn = turns[i]
        if isinstance(turn, UserTurn):
            users += 1
        elif isinstance(turn, AssistantTurn):
            assistants += 1
        if users > max_user or assistants > max_assistant:
            start = i + 1
            break

    # A tail may not open with results whose call was cut away.
    while start < len(turns) and isinstance(turns[start], ToolTurn):
        start += 1

    tail, _ = repair(turns[start:])
    return tail
