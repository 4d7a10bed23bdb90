import logging
from typing import Any, Dict, Iterator, List, Tuple

from ..models import Message, SessionState, ToolCacheEntry
from ..settings import Settings
from .tokenizer import estimate_payload_tokens

logger = logging.getLogger(__name__)

TURN_BOUNDARY_TYPES = frozenset({"step-start", "turn-boundary"})
FINISHED_STATUSES = frozenset({"completed", "error"})


def is_tool_part(part: Any) -> bool:
    return (
        isinstance(part, dict)
        and part.get("type") == "tool"
        and isinstance(part.get("callID"), str)
        and bool(part["callID"])
        and isinstance(part.get("tool"), str)
        and bool(part["tool"])
    )


def _message_parts(messages: List[Message]) -> Iterator[Dict[str, Any]]:
    # Malformed entries are skipped rather than rejected.
    for message in messages:
        if not isinstance(message, dict):
            continue
        parts = message.get("parts")
        if not isinstance(parts, list):
            continue
        for part in parts:
            if isinstance(part, dict):
                yield part


def iter_tool_parts(messages: List[Message]) -> Iterator[Tuple[int, Dict[str, Any]]]:
    """Yield (turn, part) for every tool part, turn counted from boundary markers."""
    turn = 0
    for part in _message_parts(messages):
        if part.get("type") in TURN_BOUNDARY_TYPES:
            turn += 1
            continue
        if is_tool_part(part):
            yield turn, part


def count_turns(messages: List[Message]) -> int:
    return sum(1 for part in _message_parts(messages) if part.get("type") in TURN_BOUNDARY_TYPES)


def _estimate_entry_tokens(part_state: Dict[str, Any]) -> int:
    if part_state.get("status") == "error":
        return estimate_payload_tokens(part_state.get("input"), part_state.get("error"))
    return estimate_payload_tokens(part_state.get("input"), part_state.get("output"))


def sync_tool_cache(state: SessionState, config: Settings, messages: List[Message]) -> None:
    """Bring the session's tool cache and turn counter up to date with messages.

    Safe to call on every turn with an append-only extension of the previous
    transcript: already-seen calls are only updated when their status changes.
    The transcript is never modified here.
    """
    new_calls = 0
    for turn, part in iter_tool_parts(messages):
        call_id = part["callID"]
        part_state = part.get("state")
        if not isinstance(part_state, dict):
            part_state = {}
        status = part_state.get("status", "pending")

        entry = state.tool_parameters.get(call_id)
        if entry is None:
            entry = ToolCacheEntry(
                tool=part["tool"],
                parameters=part_state.get("input"),
                status="pending",
                turn=turn,
            )
            state.tool_parameters[call_id] = entry
            state.tool_id_list.append(call_id)
            new_calls += 1

        previous_status = entry.status
        if status == previous_status:
            continue

        entry.status = status
        if call_id not in state.prune.tools:
            entry.parameters = part_state.get("input")
        if status == "error":
            entry.error = part_state.get("error")

        if status in FINISHED_STATUSES:
            entry.token_count = _estimate_entry_tokens(part_state)
        if status == "completed":
            state.nudge_counter += 1

    turns = count_turns(messages)
    if turns > state.current_turn:
        state.current_turn = turns

    if new_calls:
        logger.debug(
            "Tool cache synced: %d new calls, %d cached, turn %d",
            new_calls,
            len(state.tool_id_list),
            state.current_turn,
        )
