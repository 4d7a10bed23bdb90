"""
Numbered listing of tool calls the agent may prune by hand.

The numbers are positions in ``state.tool_id_list`` at the time the snapshot
is taken. They stay meaningful only until the next mutation of the session;
callers must resolve them through ``resolve_numeric_ids`` against the live
list and never keep them across interactions.
"""
import logging
import re
import os
from typing import Any, Iterable, List, Optional

from ..models import PrunableEntry, SessionState
from ..settings import Settings
from .policy import is_fully_protected, is_protected_file, is_turn_protected
from .tool_cache import FINISHED_STATUSES

logger = logging.getLogger(__name__)

DESCRIPTOR_KEYS = (
    "filePath",
    "file_path",
    "path",
    "command",
    "pattern",
    "url",
    "query",
    "description",
    "prompt",
)
MAX_DESCRIPTOR_LENGTH = 60
NUMERIC_ID_RE = re.compile(r"[0-9]+")


def extract_parameter_key(parameters: Any, working_directory: Optional[str] = None) -> str:
    """Short human readable descriptor for a call's parameters."""
    if not isinstance(parameters, dict):
        return ""
    for key in DESCRIPTOR_KEYS:
        value = parameters.get(key)
        if not isinstance(value, str) or not value:
            continue
        if working_directory and key in ("filePath", "file_path", "path"):
            prefix = working_directory.rstrip(os.sep) + os.sep
            if value.startswith(prefix):
                value = value[len(prefix):]
        value = " ".join(value.split())
        if len(value) > MAX_DESCRIPTOR_LENGTH:
            value = value[: MAX_DESCRIPTOR_LENGTH - 3] + "..."
        return value
    return ""


def snapshot_prunable_tools(
    state: SessionState,
    config: Settings,
    working_directory: Optional[str] = None,
) -> List[PrunableEntry]:
    entries: List[PrunableEntry] = []
    for index, call_id in enumerate(state.tool_id_list):
        if call_id in state.prune.tools:
            continue
        entry = state.tool_parameters.get(call_id)
        if entry is None or entry.status not in FINISHED_STATUSES:
            continue
        if is_fully_protected(entry.tool, config) or is_protected_file(entry.parameters, config):
            continue
        if is_turn_protected(entry.turn, state.current_turn, config):
            continue
        entries.append(
            PrunableEntry(
                index=index,
                call_id=call_id,
                tool=entry.tool,
                descriptor=extract_parameter_key(entry.parameters, working_directory),
                token_count=entry.token_count,
            )
        )
    return entries


def format_prunable_entry(entry: PrunableEntry) -> str:
    if entry.descriptor:
        return f"{entry.index}: {entry.tool}, {entry.descriptor} (~{entry.token_count} tokens)"
    return f"{entry.index}: {entry.tool} (~{entry.token_count} tokens)"


def build_prunable_tools_list(
    state: SessionState,
    config: Settings,
    working_directory: Optional[str] = None,
) -> str:
    """Render the <prunable-tools> block, or "" when nothing is prunable."""
    entries = snapshot_prunable_tools(state, config, working_directory)
    if not entries:
        return ""
    logger.debug("Prunable tools list built with %d entries", len(entries))
    lines = [format_prunable_entry(e) for e in entries]
    return "<prunable-tools>\n" + "\n".join(lines) + "\n</prunable-tools>"


def resolve_numeric_ids(numeric_ids: Iterable[str], state: SessionState) -> List[str]:
    """Map numeric id strings to call ids, dropping anything out of range."""
    call_ids: List[str] = []
    for raw in numeric_ids:
        text = str(raw).strip()
        if not NUMERIC_ID_RE.fullmatch(text):
            logger.debug("Dropping non-numeric prune id %r", raw)
            continue
        index = int(text)
        if 0 <= index < len(state.tool_id_list):
            call_ids.append(state.tool_id_list[index])
        else:
            logger.debug("Dropping out-of-range prune id %d", index)
    return call_ids
