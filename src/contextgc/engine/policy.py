"""
Eligibility rules deciding which parts of a tool call may be redacted.

Input and output are independent axes: inputs are redacted only for tools
explicitly listed in ``allow_prune_inputs``, outputs are redacted for every
tool not listed in ``protected_tools``.
"""
import fnmatch
from typing import Any, Optional

from ..settings import Settings

FILE_PATH_KEYS = ("filePath", "file_path", "path")


def can_prune_input(tool: str, config: Settings) -> bool:
    return tool in config.allow_prune_inputs


def can_prune_output(tool: str, config: Settings) -> bool:
    return tool not in config.protected_tools


def is_fully_protected(tool: str, config: Settings) -> bool:
    """True when neither the input nor the output of tool may be redacted."""
    return not can_prune_input(tool, config) and not can_prune_output(tool, config)


def get_file_path(parameters: Any) -> Optional[str]:
    if not isinstance(parameters, dict):
        return None
    for key in FILE_PATH_KEYS:
        value = parameters.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def is_protected_file(parameters: Any, config: Settings) -> bool:
    """True when the call targets a file matching protected_file_patterns."""
    if not config.protected_file_patterns:
        return False
    path = get_file_path(parameters)
    if path is None:
        return False
    return any(fnmatch.fnmatch(path, pattern) for pattern in config.protected_file_patterns)


def is_turn_protected(turn_created: int, current_turn: int, config: Settings) -> bool:
    """True when the call is too recent to be collected under turn protection."""
    if not config.turn_protection.enabled:
        return False
    return current_turn - turn_created < config.turn_protection.turns
