from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

ToolStatus = Literal["pending", "running", "completed", "error"]

# Transcript entries arrive as plain dicts: {"info": {...}, "parts": [...]}.
Message = Dict[str, Any]


@dataclass
class ToolCacheEntry:
    """Cached metadata for one tool call seen in the transcript."""

    tool: str
    parameters: Any
    status: ToolStatus = "pending"
    error: Optional[str] = None
    turn: int = 0
    token_count: int = 0


@dataclass
class SessionStats:
    """Lifetime pruning totals for a session. Only ever incremented."""

    total_tools_pruned: int = 0
    total_tokens_saved: int = 0
    total_gc_tokens: int = 0
    total_gc_tools: int = 0


@dataclass
class GCStats:
    """Counts from the latest automatic strategy pass, reset once reported."""

    tokens_collected: int = 0
    tools_deduped: int = 0


@dataclass
class PruneState:
    # call id -> turn at which it was pruned
    tools: Dict[str, int] = field(default_factory=dict)


@dataclass
class SessionState:
    """Per-conversation pruning state (tool cache, pruned ids, statistics)."""

    session_id: Optional[str] = None
    tool_id_list: List[str] = field(default_factory=list)
    tool_parameters: Dict[str, ToolCacheEntry] = field(default_factory=dict)
    prune: PruneState = field(default_factory=PruneState)
    current_turn: int = 0
    nudge_counter: int = 0
    stats: SessionStats = field(default_factory=SessionStats)
    gc_pending: GCStats = field(default_factory=GCStats)


@dataclass
class PruneResult:
    """Outcome of one redaction pass."""

    tools_pruned: int = 0
    tokens_saved: int = 0
    pruned_ids: List[str] = field(default_factory=list)


@dataclass
class PrunableEntry:
    """One row of a prunable-tools snapshot. Valid until the next mutation."""

    index: int
    call_id: str
    tool: str
    descriptor: str
    token_count: int


def create_session_state(session_id: Optional[str] = None) -> SessionState:
    return SessionState(session_id=session_id)
