from unittest.mock import AsyncMock

import pytest

from conftest import cached_state, make_config

from contextgc.engine.tokenizer import format_token_count
from contextgc.models import GCStats
from contextgc.services.notification import (
    compose_notification,
    dispatch_notification,
    flush_gc_pending,
)


def test_format_token_count() -> None:
    assert format_token_count(950) == "950"
    assert format_token_count(1000) == "1K"
    assert format_token_count(1234) == "1.2K"


def test_flush_gc_pending_moves_counts_into_totals() -> None:
    state = cached_state()
    state.gc_pending = GCStats(tokens_collected=40, tools_deduped=2)

    pending = flush_gc_pending(state)

    assert pending.tokens_collected == 40
    assert state.stats.total_gc_tokens == 40
    assert state.stats.total_gc_tools == 2
    assert state.gc_pending == GCStats()


def test_compose_returns_none_without_activity() -> None:
    assert compose_notification(cached_state(), make_config()) is None


def test_compose_detailed_lists_pruned_tools() -> None:
    state = cached_state(("call-1", "read", {"filePath": "a.py"}, 1200))
    state.stats.total_tokens_saved = 1200

    text = compose_notification(
        state,
        make_config(),
        tokens_saved=1200,
        pruned_ids=["call-1"],
        reason="noise",
        distillations={"call-1": "a.py is a stub"},
    )

    assert text.startswith("▣ DCP | ~1.2K saved total")
    assert "Noise Removal" in text
    assert "→ read: a.py" in text
    assert "a.py is a stub" in text


def test_compose_minimal_and_off() -> None:
    state = cached_state(("call-1", "bash", {"command": "ls"}, 10))
    minimal = compose_notification(
        state, make_config(prune_notification="minimal"), 10, ["call-1"], "completion"
    )
    assert minimal.endswith("[Task Complete]")
    assert "\n" not in minimal

    state.gc_pending = GCStats(tokens_collected=5, tools_deduped=1)
    off = compose_notification(state, make_config(prune_notification="off"), 10, ["call-1"])
    assert off is None
    # Pending counts are flushed even when nothing is reported.
    assert state.stats.total_gc_tools == 1


@pytest.mark.asyncio
async def test_dispatch_notification_sends_message() -> None:
    sender = AsyncMock(return_value=None)
    assert await dispatch_notification(sender, "hello", "s1") is True
    sender.assert_awaited_once_with("hello")


@pytest.mark.asyncio
async def test_dispatch_notification_swallows_sender_failure() -> None:
    """A failing sender is logged and reported as False, never raised."""
    sender = AsyncMock(side_effect=ConnectionError("closed"))
    assert await dispatch_notification(sender, "hello", "s1") is False


@pytest.mark.asyncio
async def test_dispatch_notification_without_sender_or_message() -> None:
    assert await dispatch_notification(None, "hello") is False
    assert await dispatch_notification(AsyncMock(), None) is False
