"""Manual context-management tools exposed to the agent.

Both tools resolve numeric ids from the <prunable-tools> listing and route
the resulting call ids through the redaction executor.
"""

from .prune_tools import (
    ManualPruneOutcome,
    distill,
    execute_prune_operation,
    get_context_function_map,
    get_context_tool_schemas,
    prune,
)

__all__ = [
    "ManualPruneOutcome",
    "distill",
    "execute_prune_operation",
    "get_context_function_map",
    "get_context_tool_schemas",
    "prune",
]
