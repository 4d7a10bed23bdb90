import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..engine.prunable import build_prunable_tools_list
from ..engine.prune import apply_pruned
from ..engine.strategies import run_strategies
from ..engine.tool_cache import sync_tool_cache
from ..errors import SessionNotFoundError
from ..models import GCStats, Message, SessionState, create_session_state
from ..settings import Settings, get_settings
from ..tools.prune_tools import ManualPruneOutcome, distill, prune
from .notification import NotificationSender, compose_notification, dispatch_notification

logger = logging.getLogger(__name__)

NUDGE_REMINDER = (
    "<context-reminder>Several tool calls have completed since context was last "
    "pruned. Use the prune or distill tools on entries from <prunable-tools> that "
    "are no longer needed.</context-reminder>"
)


@dataclass
class TurnResult:
    """Transformed transcript plus what the engine did to it this turn."""

    messages: List[Message]
    prunable_tools: str = ""
    notification: Optional[str] = None
    gc: GCStats = field(default_factory=GCStats)


def context_tokens(state: SessionState) -> int:
    """Approximate tokens still held by unpruned tool calls."""
    return sum(
        entry.token_count
        for call_id, entry in state.tool_parameters.items()
        if call_id not in state.prune.tools
    )


def should_nudge(state: SessionState, config: Settings) -> bool:
    if not config.nudge_enabled:
        return False
    if state.nudge_counter >= config.nudge_frequency:
        return True
    return context_tokens(state) >= config.context_limit


def session_stats(state: SessionState) -> Dict[str, Any]:
    return {
        "session_id": state.session_id,
        "current_turn": state.current_turn,
        "nudge_counter": state.nudge_counter,
        "tools_cached": len(state.tool_id_list),
        "tools_pruned": len(state.prune.tools),
        "total_tools_pruned": state.stats.total_tools_pruned,
        "total_tokens_saved": state.stats.total_tokens_saved,
        "total_gc_tokens": state.stats.total_gc_tokens,
        "total_gc_tools": state.stats.total_gc_tools,
    }


class ContextGCService:
    """Per-conversation registry that runs the pruning engine once per turn.

    Engine calls for one session are serialized with an asyncio.Lock; distinct
    sessions never share state.
    """

    def __init__(self, config: Settings, working_directory: Optional[str] = None) -> None:
        self._config = config
        self._working_directory = working_directory
        self._sessions: Dict[str, SessionState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def config(self) -> Settings:
        return self._config

    def get_session(self, session_id: str) -> SessionState:
        """Return or create the SessionState for session_id."""
        if session_id not in self._sessions:
            self._sessions[session_id] = create_session_state(session_id)
            logger.debug("Created context state for session %s", session_id)
        return self._sessions[session_id]

    def find_session(self, session_id: str) -> SessionState:
        """Return the SessionState for session_id or raise SessionNotFoundError."""
        state = self._sessions.get(session_id)
        if state is None:
            raise SessionNotFoundError(session_id)
        return state

    def delete_session(self, session_id: str) -> bool:
        """Forget session_id. Returns True if it existed.

        The per-session lock is kept, so a request still holding it stays
        serialized with whatever arrives next for the same id.
        """
        return self._sessions.pop(session_id, None) is not None

    def _lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    def prunable_tools(self, session_id: str) -> str:
        state = self.find_session(session_id)
        text = build_prunable_tools_list(state, self._config, self._working_directory)
        if text and should_nudge(state, self._config):
            text += "\n" + NUDGE_REMINDER
        return text

    async def transform(
        self,
        session_id: str,
        messages: List[Message],
        sender: Optional[NotificationSender] = None,
    ) -> TurnResult:
        """Sync, auto-collect and redact one delivered transcript in place."""
        if not self._config.enabled:
            return TurnResult(messages=messages)

        async with self._lock(session_id):
            state = self.get_session(session_id)
            sync_tool_cache(state, self._config, messages)
            gc = run_strategies(state, self._config, messages)
            apply_pruned(state, self._config, messages)
            notification = compose_notification(
                state, self._config, working_directory=self._working_directory
            )
            prunable = self.prunable_tools(session_id)

        await dispatch_notification(sender, notification, session_id)
        return TurnResult(
            messages=messages,
            prunable_tools=prunable,
            notification=notification,
            gc=gc,
        )

    async def prune(
        self,
        session_id: str,
        items: Any,
        reason: Optional[str] = None,
        messages: Optional[List[Message]] = None,
        sender: Optional[NotificationSender] = None,
    ) -> tuple[ManualPruneOutcome, Optional[str]]:
        """Run the manual prune tool for session_id."""
        return await self._manual(session_id, "prune", items, reason, messages, sender)

    async def distill(
        self,
        session_id: str,
        items: Any,
        messages: Optional[List[Message]] = None,
        sender: Optional[NotificationSender] = None,
    ) -> tuple[ManualPruneOutcome, Optional[str]]:
        """Run the manual distill tool for session_id."""
        return await self._manual(session_id, "distill", items, None, messages, sender)

    async def _manual(
        self,
        session_id: str,
        tool: str,
        items: Any,
        reason: Optional[str],
        messages: Optional[List[Message]],
        sender: Optional[NotificationSender],
    ) -> tuple[ManualPruneOutcome, Optional[str]]:
        # Ids recorded here are redacted in the supplied transcript (if any) and
        # in every transcript delivered to transform() afterwards.
        messages = messages if messages is not None else []
        async with self._lock(session_id):
            state = self.find_session(session_id)
            if tool == "distill":
                outcome = distill(state, self._config, messages, items)
            else:
                outcome = prune(state, self._config, messages, items, reason)
            notification = compose_notification(
                state,
                self._config,
                tokens_saved=outcome.result.tokens_saved,
                pruned_ids=outcome.result.pruned_ids,
                reason=outcome.reason,
                distillations=outcome.distillations,
                working_directory=self._working_directory,
            )

        await dispatch_notification(sender, notification, session_id)
        return outcome, notification


# Lazy singleton for the HTTP surface
_context_service_instance: ContextGCService | None = None


def get_context_service() -> ContextGCService:
    """Return the process-wide ContextGCService built from settings. Cached."""
    global _context_service_instance
    if _context_service_instance is None:
        _context_service_instance = ContextGCService(config=get_settings())
    return _context_service_instance


def close_context_service() -> None:
    """Drop all session state held by the service. Idempotent."""
    global _context_service_instance
    if _context_service_instance is not None:
        _context_service_instance = None
        logger.debug("Context service closed")
