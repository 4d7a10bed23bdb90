"""
Redaction executor: the single place where transcript content is mutated.

``collect`` records new call ids as pruned, redacts every matching tool part
and credits the session statistics. ``apply_pruned`` re-applies redaction for
already recorded ids to a freshly delivered transcript without touching the
statistics.
"""
import logging
from typing import Any, Dict, Iterable, List

from ..models import Message, PruneResult, SessionState
from ..settings import Settings
from .policy import can_prune_input, can_prune_output
from .tool_cache import iter_tool_parts

logger = logging.getLogger(__name__)

PRUNED_INPUT_PLACEHOLDER = "[Pruned input]"
PRUNED_OUTPUT_PLACEHOLDER = (
    "[Output removed to save context - information superseded or no longer needed]"
)
PRUNED_ERROR_PLACEHOLDER = "[Error output removed to save context]"


def _redact_part(part: Dict[str, Any], config: Settings) -> None:
    part_state = part.get("state")
    if not isinstance(part_state, dict):
        return
    tool = part["tool"]

    if can_prune_input(tool, config) and "input" in part_state:
        tool_input = part_state["input"]
        if isinstance(tool_input, dict):
            part_state["input"] = {key: PRUNED_INPUT_PLACEHOLDER for key in tool_input}
        elif tool_input is not None:
            part_state["input"] = PRUNED_INPUT_PLACEHOLDER

    if can_prune_output(tool, config):
        if part_state.get("status") == "error":
            if part_state.get("error") is not None:
                part_state["error"] = PRUNED_ERROR_PLACEHOLDER
        elif "output" in part_state:
            part_state["output"] = PRUNED_OUTPUT_PLACEHOLDER


def _parts_by_call_id(messages: List[Message]) -> Dict[str, List[Dict[str, Any]]]:
    # The same call may be echoed in more than one transcript entry.
    index: Dict[str, List[Dict[str, Any]]] = {}
    for _, part in iter_tool_parts(messages):
        index.setdefault(part["callID"], []).append(part)
    return index


def collect(
    state: SessionState,
    config: Settings,
    messages: List[Message],
    ids: Iterable[str],
    reason: str,
) -> PruneResult:
    """Prune the given tool call ids and return what was collected.

    Unknown ids are skipped and logged; ids already pruned are skipped
    silently so repeated calls never change the transcript or statistics.
    """
    result = PruneResult()
    parts = _parts_by_call_id(messages)

    for call_id in ids:
        if call_id in state.prune.tools:
            continue
        entry = state.tool_parameters.get(call_id)
        if entry is None:
            logger.debug("Skipping unknown tool call id %s (%s)", call_id, reason)
            continue

        for part in parts.get(call_id, []):
            _redact_part(part, config)
        state.prune.tools[call_id] = state.current_turn

        result.tools_pruned += 1
        result.tokens_saved += entry.token_count
        result.pruned_ids.append(call_id)

    state.stats.total_tools_pruned += result.tools_pruned
    state.stats.total_tokens_saved += result.tokens_saved

    if result.tools_pruned:
        logger.info(
            "Pruned %d tool calls (~%d tokens) reason=%s session=%s",
            result.tools_pruned,
            result.tokens_saved,
            reason,
            state.session_id,
        )
    return result


def apply_pruned(state: SessionState, config: Settings, messages: List[Message]) -> int:
    """Redact every part whose call id is already recorded as pruned.

    Returns the number of parts touched.
    """
    if not state.prune.tools:
        return 0
    touched = 0
    for _, part in iter_tool_parts(messages):
        if part["callID"] in state.prune.tools:
            _redact_part(part, config)
            touched += 1
    return touched
