import logging
from typing import Awaitable, Callable, Dict, List, Optional

from ..engine.prunable import extract_parameter_key
from ..engine.tokenizer import format_token_count
from ..models import GCStats, SessionState, SessionStats
from ..settings import Settings

logger = logging.getLogger(__name__)

NotificationSender = Callable[[str], Awaitable[None]]

PRUNE_REASON_LABELS: Dict[str, str] = {
    "completion": "Task Complete",
    "noise": "Noise Removal",
    "consolidation": "Consolidation",
    "extraction": "Extraction",
}


def flush_gc_pending(state: SessionState) -> GCStats:
    """Move the pending automatic-collection counts into the session totals."""
    pending = state.gc_pending
    state.stats.total_gc_tokens += pending.tokens_collected
    state.stats.total_gc_tools += pending.tools_deduped
    state.gc_pending = GCStats()
    return pending


def _stats_header(stats: SessionStats, just_now_tokens: int) -> str:
    # total_tokens_saved already includes automatic collections.
    total = f"~{format_token_count(stats.total_tokens_saved)}"
    just_now = f"~{format_token_count(just_now_tokens)}"
    return f"▣ DCP | {total} saved total ({just_now} just now)"


def build_notification_message(
    state: SessionState,
    config: Settings,
    tokens_saved: int,
    pruned_ids: List[str],
    gc_pending: GCStats,
    reason: Optional[str] = None,
    distillations: Optional[Dict[str, str]] = None,
    working_directory: Optional[str] = None,
) -> str:
    just_now_tokens = tokens_saved + gc_pending.tokens_collected
    message = _stats_header(state.stats, just_now_tokens)
    label = PRUNE_REASON_LABELS.get(reason or "", reason or "")

    if config.prune_notification == "minimal":
        return message + (f" [{label}]" if label else "")

    if gc_pending.tools_deduped:
        message += (
            f"\n▣ Auto-collected {gc_pending.tools_deduped} tools "
            f"(~{format_token_count(gc_pending.tokens_collected)})"
        )

    if pruned_ids:
        suffix = f" - {label}" if label else ""
        message += f"\n\n▣ Pruned tools (~{format_token_count(tokens_saved)}){suffix}"
        for call_id in pruned_ids:
            entry = state.tool_parameters.get(call_id)
            if entry is None:
                continue
            key = extract_parameter_key(entry.parameters, working_directory)
            line = f"→ {entry.tool}: {key}" if key else f"→ {entry.tool}"
            message += "\n" + line
            if distillations and distillations.get(call_id):
                message += f"\n    {distillations[call_id]}"

    return message.strip()


def compose_notification(
    state: SessionState,
    config: Settings,
    tokens_saved: int = 0,
    pruned_ids: Optional[List[str]] = None,
    reason: Optional[str] = None,
    distillations: Optional[Dict[str, str]] = None,
    working_directory: Optional[str] = None,
) -> Optional[str]:
    """Build the pruning summary for this turn, if there is anything to report.

    Pending automatic-collection counts are always flushed into the session
    totals, even when notifications are off.
    """
    pruned_ids = pruned_ids or []
    gc_pending = flush_gc_pending(state)
    if not pruned_ids and not gc_pending.tools_deduped:
        return None
    if config.prune_notification == "off":
        return None
    return build_notification_message(
        state,
        config,
        tokens_saved,
        pruned_ids,
        gc_pending,
        reason=reason,
        distillations=distillations,
        working_directory=working_directory,
    )


async def dispatch_notification(
    sender: Optional[NotificationSender],
    message: Optional[str],
    session_id: Optional[str] = None,
) -> bool:
    """Send message through sender. Failures are logged and reported as False."""
    if sender is None or not message:
        return False
    try:
        await sender(message)
    except Exception as e:
        logger.error("Failed to send notification for %s: %s", session_id, e)
        return False
    return True
