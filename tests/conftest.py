import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest


_root = Path(__file__).resolve().parents[1]
_src = _root / "src"
if _src.exists() and str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from contextgc.engine import tokenizer  # noqa: E402
from contextgc.models import SessionState, ToolCacheEntry, create_session_state  # noqa: E402
from contextgc.settings import Settings  # noqa: E402


class WordEncoder:
    """Deterministic stand-in for a tiktoken encoding: one token per word."""

    def encode(self, text: str, disallowed_special: Any = ()) -> List[str]:
        return text.split()


@pytest.fixture(autouse=True)
def word_tokenizer(monkeypatch: pytest.MonkeyPatch) -> WordEncoder:
    """Avoid loading BPE files; token counts become whitespace word counts."""
    encoder = WordEncoder()
    monkeypatch.setattr(tokenizer, "get_encoder", lambda: encoder)
    return encoder


def make_config(
    allow_prune_inputs: Optional[List[str]] = None,
    protected_tools: Optional[List[str]] = None,
    **overrides: Any,
) -> Settings:
    """Settings with explicit protection lists and notifications on."""
    return Settings(
        allow_prune_inputs=allow_prune_inputs or [],
        protected_tools=["task"] if protected_tools is None else protected_tools,
        **overrides,
    )


def tool_part(
    call_id: str,
    tool: str = "bash",
    tool_input: Any = None,
    output: Any = "ok",
    status: str = "completed",
    error: Optional[str] = None,
) -> Dict[str, Any]:
    state: Dict[str, Any] = {
        "status": status,
        "input": {"command": "ls"} if tool_input is None else tool_input,
    }
    if status == "completed":
        state["output"] = output
    if status == "error":
        state["error"] = error or "boom"
    return {"type": "tool", "tool": tool, "callID": call_id, "state": state}


def step_start() -> Dict[str, Any]:
    return {"type": "step-start"}


def message(*parts: Dict[str, Any], role: str = "assistant", msg_id: str = "m") -> Dict[str, Any]:
    return {
        "info": {"id": msg_id, "role": role, "time": {"created": 0}},
        "parts": list(parts),
    }


def cached_state(*entries: tuple) -> SessionState:
    """Session state seeded with (call_id, tool, parameters, token_count[, status, turn])."""
    state = create_session_state("session-1")
    for row in entries:
        call_id, tool, parameters, tokens = row[:4]
        status = row[4] if len(row) > 4 else "completed"
        turn = row[5] if len(row) > 5 else 0
        state.tool_id_list.append(call_id)
        state.tool_parameters[call_id] = ToolCacheEntry(
            tool=tool,
            parameters=parameters,
            status=status,
            turn=turn,
            token_count=tokens,
        )
    return state


@pytest.fixture
def config() -> Settings:
    return make_config()
