"""Context garbage-collection engine.

Every function here is synchronous and keeps no state of its own: the
``SessionState`` for one conversation is passed in explicitly and mutated in
place.
"""

from .policy import can_prune_input, can_prune_output, is_fully_protected
from .prunable import build_prunable_tools_list, resolve_numeric_ids, snapshot_prunable_tools
from .prune import (
    PRUNED_ERROR_PLACEHOLDER,
    PRUNED_INPUT_PLACEHOLDER,
    PRUNED_OUTPUT_PLACEHOLDER,
    apply_pruned,
    collect,
)
from .strategies import deduplicate, purge_errors, run_strategies, supersede_writes
from .tool_cache import sync_tool_cache

__all__ = [
    "PRUNED_ERROR_PLACEHOLDER",
    "PRUNED_INPUT_PLACEHOLDER",
    "PRUNED_OUTPUT_PLACEHOLDER",
    "apply_pruned",
    "build_prunable_tools_list",
    "can_prune_input",
    "can_prune_output",
    "collect",
    "deduplicate",
    "is_fully_protected",
    "purge_errors",
    "resolve_numeric_ids",
    "run_strategies",
    "snapshot_prunable_tools",
    "supersede_writes",
    "sync_tool_cache",
]
