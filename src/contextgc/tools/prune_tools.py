import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Optional

from ..engine.prunable import resolve_numeric_ids, snapshot_prunable_tools
from ..engine.prune import collect
from ..engine.tokenizer import format_token_count
from ..errors import PruneRequestError
from ..models import Message, PruneResult, SessionState
from ..settings import Settings

logger = logging.getLogger(__name__)

MANUAL_PRUNE_REASONS = ("completion", "noise", "consolidation")
DISTILL_REASON = "extraction"


@dataclass
class ManualPruneOutcome:
    """Result of a manual prune/distill call, ready to hand back to the agent."""

    result: PruneResult
    reason: str
    distillations: Dict[str, str] = field(default_factory=dict)
    dropped_ids: List[str] = field(default_factory=list)

    def to_text(self) -> str:
        text = (
            f"Pruned {self.result.tools_pruned} tool calls "
            f"(~{format_token_count(self.result.tokens_saved)} tokens)."
        )
        if self.dropped_ids:
            text += f" Ignored invalid ids: {', '.join(self.dropped_ids)}."
        return text


def _validate_items(items: Any, require_distillation: bool) -> List[Dict[str, Any]]:
    if not items or not isinstance(items, list):
        raise PruneRequestError("Missing items. Provide at least one { id } entry.")
    for item in items:
        if not isinstance(item, dict):
            raise PruneRequestError("Each item must be an object with an id.")
        item_id = item.get("id")
        if not isinstance(item_id, str) or not item_id.strip():
            logger.debug("Prune item missing id: %r", item)
            raise PruneRequestError(
                "Each item must have an id (numeric string from <prunable-tools>)."
            )
        distillation = item.get("distillation")
        if require_distillation and (not isinstance(distillation, str) or not distillation):
            logger.debug("Distill item missing distillation: %r", item)
            raise PruneRequestError("Each item must have a distillation string.")
        if distillation is not None and not isinstance(distillation, str):
            raise PruneRequestError("distillation must be a string when provided.")
    return items


def execute_prune_operation(
    state: SessionState,
    config: Settings,
    messages: List[Message],
    items: Any,
    reason: str,
    require_distillation: bool = False,
) -> ManualPruneOutcome:
    """Resolve numeric ids from a manual tool call and route them to collect().

    Ids that do not name an entry of the current prunable list are dropped.
    If nothing valid remains a PruneRequestError is raised before any state
    is touched.
    """
    items = _validate_items(items, require_distillation)

    listed = {entry.call_id for entry in snapshot_prunable_tools(state, config)}
    call_ids: List[str] = []
    distillations: Dict[str, str] = {}
    dropped: List[str] = []
    for item in items:
        resolved = resolve_numeric_ids([item["id"]], state)
        if not resolved or resolved[0] not in listed:
            logger.debug("Dropping prune id %r not in the prunable list", item["id"])
            dropped.append(item["id"])
            continue
        call_id = resolved[0]
        if call_id not in call_ids:
            call_ids.append(call_id)
        if item.get("distillation"):
            distillations[call_id] = item["distillation"]

    if not call_ids:
        raise PruneRequestError(
            "None of the provided ids are valid. Use ids from the current <prunable-tools> list."
        )

    result = collect(state, config, messages, call_ids, reason)
    state.nudge_counter = 0
    return ManualPruneOutcome(
        result=result,
        reason=reason,
        distillations=distillations,
        dropped_ids=dropped,
    )


def prune(
    state: SessionState,
    config: Settings,
    messages: List[Message],
    items: Any,
    reason: Optional[str] = None,
) -> ManualPruneOutcome:
    """Prune tool calls by numeric id from the <prunable-tools> list."""
    reason = reason or "noise"
    if reason not in MANUAL_PRUNE_REASONS:
        raise PruneRequestError(
            f"Invalid reason {reason!r}; expected one of {', '.join(MANUAL_PRUNE_REASONS)}."
        )
    return execute_prune_operation(state, config, messages, items, reason)


def distill(
    state: SessionState,
    config: Settings,
    messages: List[Message],
    items: Any,
) -> ManualPruneOutcome:
    """Prune tool calls whose key facts the agent has distilled into text."""
    return execute_prune_operation(
        state, config, messages, items, DISTILL_REASON, require_distillation=True
    )


@lru_cache(maxsize=1)
def get_context_tool_schemas() -> List[Dict[str, Any]]:
    """Return OpenAI function schemas for the manual context tools (cached)."""
    return [
        {
            "type": "function",
            "function": {
                "name": "prune",
                "description": (
                    "Remove completed tool calls that are no longer needed from the "
                    "context, by numeric id from the <prunable-tools> list"
                ),
                "parameters": {
                    "type": "object",
                    "properties": {
                        "items": {
                            "type": "array",
                            "description": "Tool calls to prune",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "id": {
                                        "type": "string",
                                        "description": "Numeric ID from the <prunable-tools> list",
                                    }
                                },
                                "required": ["id"],
                            },
                        },
                        "reason": {
                            "type": "string",
                            "enum": list(MANUAL_PRUNE_REASONS),
                            "description": "Why these calls are no longer needed",
                        },
                    },
                    "required": ["items"],
                },
            },
        },
        {
            "type": "function",
            "function": {
                "name": "distill",
                "description": (
                    "Replace tool outputs with a distillation of their key facts, "
                    "by numeric id from the <prunable-tools> list"
                ),
                "parameters": {
                    "type": "object",
                    "properties": {
                        "items": {
                            "type": "array",
                            "description": "Array of distillation entries, each pairing an ID with its distillation",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "id": {
                                        "type": "string",
                                        "description": "Numeric ID from the <prunable-tools> list",
                                    },
                                    "distillation": {
                                        "type": "string",
                                        "description": "Complete technical distillation for this tool output",
                                    },
                                },
                                "required": ["id", "distillation"],
                            },
                        }
                    },
                    "required": ["items"],
                },
            },
        },
    ]


@lru_cache(maxsize=1)
def get_context_function_map() -> Dict[str, Any]:
    """Return the map of manual tool names to their implementations."""
    return {
        "prune": prune,
        "distill": distill,
    }
