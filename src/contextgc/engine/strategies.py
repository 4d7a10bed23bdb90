"""
Automatic collection strategies.

Each strategy scans the tool cache and proposes call ids to collect. They are
independent of each other and of the order they run in; ``run_strategies``
feeds their candidates through the redaction executor and folds the result
into ``state.gc_pending``.
"""
import json
import logging
import os
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..models import GCStats, Message, SessionState, ToolCacheEntry
from ..settings import Settings
from .policy import is_fully_protected, is_protected_file, is_turn_protected
from .prune import collect

logger = logging.getLogger(__name__)

DEDUPLICATION_REASON = "deduplication"
SUPERSEDE_WRITES_REASON = "supersede-writes"
PURGE_ERRORS_REASON = "purge-errors"


def _normalize(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _normalize(v) for k, v in sorted(value.items()) if v is not None}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def parameters_signature(tool: str, parameters: Any) -> str:
    """Stable key for a call: tool name plus normalized parameters."""
    normalized = json.dumps(_normalize(parameters), sort_keys=True, default=str)
    return f"{tool}::{normalized}"


def _candidates(state: SessionState, config: Settings) -> List[Tuple[str, ToolCacheEntry]]:
    """Unpruned, redactable cache entries in first-seen order."""
    rows = []
    for call_id in state.tool_id_list:
        if call_id in state.prune.tools:
            continue
        entry = state.tool_parameters.get(call_id)
        if entry is None or is_fully_protected(entry.tool, config):
            continue
        if is_turn_protected(entry.turn, state.current_turn, config):
            continue
        rows.append((call_id, entry))
    return rows


def deduplicate(state: SessionState, config: Settings) -> List[str]:
    """Propose all but the most recent of each group of identical completed calls."""
    strategy = config.strategies.deduplication
    if not strategy.enabled:
        return []

    groups: Dict[str, List[str]] = {}
    for call_id, entry in _candidates(state, config):
        if entry.status != "completed":
            continue
        if entry.tool in strategy.protected_tools:
            continue
        if is_protected_file(entry.parameters, config):
            continue
        groups.setdefault(parameters_signature(entry.tool, entry.parameters), []).append(call_id)

    ids: List[str] = []
    for call_ids in groups.values():
        if len(call_ids) > 1:
            ids.extend(call_ids[:-1])
    return ids


def _write_target(entry: ToolCacheEntry, config: Settings) -> Optional[str]:
    strategy = config.strategies.supersede_writes
    if not isinstance(entry.parameters, dict):
        return None
    for key in strategy.target_keys:
        value = entry.parameters.get(key)
        if isinstance(value, str) and value:
            if strategy.match_policy == "normpath":
                return os.path.normpath(value)
            return value
    return None


def supersede_writes(state: SessionState, config: Settings) -> List[str]:
    """Propose completed writes whose target was overwritten by a later write."""
    strategy = config.strategies.supersede_writes
    if not strategy.enabled:
        return []

    # Later writes supersede even when they are themselves pruned or too recent
    # to collect, so walk the full cache rather than the candidate rows.
    latest: Dict[str, int] = {}
    writes: List[Tuple[int, str, str]] = []
    for position, call_id in enumerate(state.tool_id_list):
        entry = state.tool_parameters.get(call_id)
        if entry is None or entry.tool not in strategy.write_tools:
            continue
        if entry.status != "completed":
            continue
        target = _write_target(entry, config)
        if target is None:
            continue
        latest[target] = position
        writes.append((position, call_id, target))

    collectable = {call_id for call_id, _ in _candidates(state, config)}
    ids = []
    for position, call_id, target in writes:
        if call_id not in collectable or latest[target] <= position:
            continue
        if is_protected_file(state.tool_parameters[call_id].parameters, config):
            continue
        ids.append(call_id)
    return ids


def purge_errors(state: SessionState, config: Settings) -> List[str]:
    """Propose failed calls older than the configured number of turns."""
    strategy = config.strategies.purge_errors
    if not strategy.enabled:
        return []

    ids = []
    for call_id, entry in _candidates(state, config):
        if entry.status != "error" or entry.tool in strategy.protected_tools:
            continue
        if state.current_turn - entry.turn > strategy.turns:
            ids.append(call_id)
    return ids


STRATEGIES: List[Tuple[str, Callable[[SessionState, Settings], List[str]]]] = [
    (DEDUPLICATION_REASON, deduplicate),
    (SUPERSEDE_WRITES_REASON, supersede_writes),
    (PURGE_ERRORS_REASON, purge_errors),
]


def automatic_strategies_enabled(config: Settings) -> bool:
    return not config.manual_mode.enabled or config.manual_mode.automatic_strategies


def run_strategies(state: SessionState, config: Settings, messages: List[Message]) -> GCStats:
    """Run every enabled strategy and collect its candidates.

    Returns the counts collected by this pass; they are also added to
    ``state.gc_pending`` until the notification layer reports them.
    """
    collected = GCStats()
    if not automatic_strategies_enabled(config):
        return collected

    for reason, strategy in STRATEGIES:
        ids = strategy(state, config)
        if not ids:
            continue
        result = collect(state, config, messages, ids, reason)
        collected.tokens_collected += result.tokens_saved
        collected.tools_deduped += result.tools_pruned

    state.gc_pending.tokens_collected += collected.tokens_collected
    state.gc_pending.tools_deduped += collected.tools_deduped
    return collected
