import copy
from unittest.mock import AsyncMock

import pytest

from conftest import make_config, message, step_start, tool_part

from contextgc.engine.prune import PRUNED_OUTPUT_PLACEHOLDER
from contextgc.errors import PruneRequestError, SessionNotFoundError
from contextgc.models import ToolCacheEntry
from contextgc.services.context_service import (
    NUDGE_REMINDER,
    ContextGCService,
    context_tokens,
    session_stats,
    should_nudge,
)


def _transcript() -> list:
    return [
        message(step_start(), tool_part("call-1", "read", {"filePath": "a.py"}, "alpha beta")),
        message(step_start(), tool_part("call-2", "read", {"filePath": "a.py"}, "alpha beta")),
        message(step_start(), tool_part("call-3", "bash", {"command": "ls"}, "x y z")),
    ]


@pytest.fixture
def service() -> ContextGCService:
    """Service with deduplication on and protected tools limited to task."""
    return ContextGCService(config=make_config())


@pytest.mark.asyncio
async def test_transform_syncs_collects_and_redacts(service: ContextGCService) -> None:
    sender = AsyncMock(return_value=None)
    messages = _transcript()

    result = await service.transform("s1", messages, sender=sender)

    state = service.find_session("s1")
    assert state.session_id == "s1"
    assert state.tool_id_list == ["call-1", "call-2", "call-3"]
    assert state.current_turn == 3
    assert list(state.prune.tools) == ["call-1"]
    assert result.gc.tools_deduped == 1
    assert messages[0]["parts"][1]["state"]["output"] == PRUNED_OUTPUT_PLACEHOLDER
    assert "1: read, a.py" in result.prunable_tools
    assert "0: read" not in result.prunable_tools
    sender.assert_awaited_once()
    assert result.notification == sender.await_args.args[0]
    assert state.stats.total_gc_tools == 1
    assert state.gc_pending.tools_deduped == 0


@pytest.mark.asyncio
async def test_transform_reapplies_pruning_to_fresh_transcript(service: ContextGCService) -> None:
    """The host re-delivers unredacted transcripts; pruned calls stay pruned."""
    await service.transform("s1", _transcript())
    stats = copy.deepcopy(service.find_session("s1").stats)

    fresh = _transcript()
    result = await service.transform("s1", fresh)

    assert fresh[0]["parts"][1]["state"]["output"] == PRUNED_OUTPUT_PLACEHOLDER
    assert result.notification is None
    assert service.find_session("s1").stats == stats


@pytest.mark.asyncio
async def test_transform_disabled_returns_transcript_untouched() -> None:
    service = ContextGCService(config=make_config(enabled=False))
    messages = _transcript()
    before = copy.deepcopy(messages)

    result = await service.transform("s1", messages)

    assert result.messages == before
    with pytest.raises(SessionNotFoundError):
        service.find_session("s1")


@pytest.mark.asyncio
async def test_notification_failure_does_not_undo_pruning(service: ContextGCService) -> None:
    sender = AsyncMock(side_effect=RuntimeError("socket closed"))
    messages = _transcript()

    result = await service.transform("s1", messages, sender=sender)

    assert result.notification is not None
    assert "call-1" in service.find_session("s1").prune.tools


@pytest.mark.asyncio
async def test_manual_prune_then_transform(service: ContextGCService) -> None:
    await service.transform("s1", _transcript())

    outcome, notification = await service.prune("s1", [{"id": "2"}], "completion")

    assert outcome.result.pruned_ids == ["call-3"]
    assert notification is not None and "Task Complete" in notification

    fresh = _transcript()
    await service.transform("s1", fresh)
    assert fresh[2]["parts"][1]["state"]["output"] == PRUNED_OUTPUT_PLACEHOLDER


@pytest.mark.asyncio
async def test_manual_prune_unknown_session(service: ContextGCService) -> None:
    with pytest.raises(SessionNotFoundError):
        await service.prune("nope", [{"id": "0"}])


@pytest.mark.asyncio
async def test_manual_prune_stale_id_reports_error(service: ContextGCService) -> None:
    await service.transform("s1", _transcript())
    stats = copy.deepcopy(service.find_session("s1").stats)

    with pytest.raises(PruneRequestError):
        await service.prune("s1", [{"id": "5"}])

    assert service.find_session("s1").stats == stats


@pytest.mark.asyncio
async def test_distill_through_service(service: ContextGCService) -> None:
    await service.transform("s1", _transcript())
    outcome, notification = await service.distill(
        "s1", [{"id": "2", "distillation": "three files listed"}]
    )
    assert outcome.result.pruned_ids == ["call-3"]
    assert "three files listed" in notification


@pytest.mark.asyncio
async def test_sessions_are_isolated(service: ContextGCService) -> None:
    await service.transform("s1", _transcript())
    await service.transform("s2", [message(tool_part("other-1"))])

    assert service.find_session("s2").tool_id_list == ["other-1"]
    assert service.delete_session("s1") is True
    assert service.delete_session("s1") is False
    with pytest.raises(SessionNotFoundError):
        service.find_session("s1")


def test_should_nudge_by_counter_and_context_limit() -> None:
    config = make_config(nudge_frequency=2, context_limit=100)
    service = ContextGCService(config=config)
    state = service.get_session("s1")

    assert should_nudge(state, config) is False
    state.nudge_counter = 2
    assert should_nudge(state, config) is True

    state.nudge_counter = 0
    state.tool_id_list.append("call-1")
    state.tool_parameters["call-1"] = ToolCacheEntry(tool="bash", parameters={}, token_count=150)
    assert context_tokens(state) == 150
    assert should_nudge(state, config) is True
    assert should_nudge(state, make_config(nudge_enabled=False)) is False


@pytest.mark.asyncio
async def test_prunable_list_carries_nudge_reminder() -> None:
    service = ContextGCService(config=make_config(nudge_frequency=1))
    result = await service.transform("s1", [message(tool_part("call-1"))])
    assert result.prunable_tools.endswith(NUDGE_REMINDER)


@pytest.mark.asyncio
async def test_session_stats_snapshot(service: ContextGCService) -> None:
    await service.transform("s1", _transcript())
    stats = session_stats(service.find_session("s1"))
    assert stats["tools_cached"] == 3
    assert stats["tools_pruned"] == 1
    assert stats["total_gc_tools"] == 1
    assert stats["total_tools_pruned"] == 1


@pytest.mark.asyncio
async def test_delete_session_keeps_lock_held_by_running_request(
    service: ContextGCService,
) -> None:
    await service.transform("s1", _transcript())
    lock = service._lock("s1")

    async with lock:
        assert service.delete_session("s1") is True
        assert service._lock("s1") is lock
