"""
Unit Tests for Request Coordinator

Tests in-flight coalescing, the success-only TTL cache and invalidation.
"""

import asyncio
import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "learning_session_orchestrator", "src"))

from learning_session_orchestrator.errors import ConfigurationError
from learning_session_orchestrator.gateway import AgentResult
from learning_session_orchestrator.request_coordinator import AgentRequestKey, RequestCoordinator


class TestRequestCoordinator:
    """Test suite for RequestCoordinator."""

    @pytest.fixture
    def coordinator(self, fake_gateway, ttl_clock):
        fake_gateway.respond("clo", AgentResult.ok({"title": "Plan"}))
        return RequestCoordinator(fake_gateway, ttl_seconds=30, clock=ttl_clock)

    def test_make_key_qualifies_action(self):
        key = RequestCoordinator.make_key("user-1", "clo", "generate_module", 3)
        assert key == AgentRequestKey(user_id="user-1", action="clo.generate_module", week_number=3)

    def test_make_key_with_scope(self):
        key = RequestCoordinator.make_key("user-1", "socratic", "ask_question", 3, scope="2")
        assert key.action == "socratic.ask_question#2"

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_call(self, coordinator, fake_gateway):
        """Two callers of the same key while a call is running get the same result."""
        fake_gateway.gate = asyncio.Event()

        first = asyncio.ensure_future(coordinator.request("clo", "generate_module", "user-1", 3))
        second = asyncio.ensure_future(coordinator.request("clo", "generate_module", "user-1", 3))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        key = RequestCoordinator.make_key("user-1", "clo", "generate_module", 3)
        assert coordinator.is_in_flight(key)

        fake_gateway.gate.set()
        results = await asyncio.gather(first, second)

        assert len(fake_gateway.calls) == 1
        assert results[0] is results[1]
        assert results[0].data == {"title": "Plan"}
        assert not coordinator.is_in_flight(key)
        stats = coordinator.get_stats()
        assert stats["misses"] == 1
        assert stats["joins"] == 1

    @pytest.mark.asyncio
    async def test_success_is_cached_within_ttl(self, coordinator, fake_gateway, ttl_clock):
        await coordinator.request("clo", "generate_module", "user-1", 3)
        ttl_clock.advance(29)
        result = await coordinator.request("clo", "generate_module", "user-1", 3)

        assert result.success
        assert len(fake_gateway.calls) == 1
        assert coordinator.get_stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_expired_entry_triggers_new_call(self, coordinator, fake_gateway, ttl_clock):
        await coordinator.request("clo", "generate_module", "user-1", 3)
        ttl_clock.advance(30)
        await coordinator.request("clo", "generate_module", "user-1", 3)

        assert len(fake_gateway.calls) == 2

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, coordinator, fake_gateway):
        fake_gateway.respond("clo", AgentResult.fail("Agent proxy error: 500 - boom"), AgentResult.ok({"title": "Plan"}))

        failed = await coordinator.request("clo", "generate_module", "user-1", 3)
        retried = await coordinator.request("clo", "generate_module", "user-1", 3)

        assert failed.success is False
        assert "500" in failed.error
        assert retried.success is True
        assert len(fake_gateway.calls) == 2

    @pytest.mark.asyncio
    async def test_joined_callers_share_failure(self, coordinator, fake_gateway):
        fake_gateway.respond("clo", AgentResult.fail("timeout"))
        fake_gateway.gate = asyncio.Event()

        first = asyncio.ensure_future(coordinator.request("clo", "generate_module", "user-1", 3))
        second = asyncio.ensure_future(coordinator.request("clo", "generate_module", "user-1", 3))
        await asyncio.sleep(0)
        fake_gateway.gate.set()
        results = await asyncio.gather(first, second)

        assert [r.error for r in results] == ["timeout", "timeout"]
        assert len(fake_gateway.calls) == 1

    @pytest.mark.asyncio
    async def test_distinct_keys_do_not_coalesce(self, coordinator, fake_gateway):
        await coordinator.request("clo", "generate_module", "user-1", 3)
        await coordinator.request("clo", "generate_module", "user-1", 4)
        await coordinator.request("clo", "generate_module", "user-2", 3)
        await coordinator.request("clo", "generate_module", "user-1", 3, scope="retry")

        assert len(fake_gateway.calls) == 4

    @pytest.mark.asyncio
    async def test_payload_is_forwarded_on_miss(self, coordinator, fake_gateway):
        await coordinator.request("clo", "generate_module", "user-1", 3, payload={"userInput": "go"})

        call = fake_gateway.calls[0]
        assert call["payload"] == {"userInput": "go"}
        assert call["week_number"] == 3

    @pytest.mark.asyncio
    async def test_unknown_agent_raises(self, coordinator, fake_gateway):
        with pytest.raises(ConfigurationError):
            await coordinator.request("oracle", "predict", "user-1", 3)
        assert fake_gateway.calls == []

    @pytest.mark.asyncio
    async def test_invalidate_by_week(self, coordinator, fake_gateway):
        await coordinator.request("clo", "generate_module", "user-1", 3)
        await coordinator.request("clo", "generate_module", "user-1", 4)

        removed = coordinator.invalidate("user-1", 3)

        assert removed == 1
        assert coordinator.peek(RequestCoordinator.make_key("user-1", "clo", "generate_module", 3)) is None
        assert coordinator.peek(RequestCoordinator.make_key("user-1", "clo", "generate_module", 4)) is not None

    @pytest.mark.asyncio
    async def test_invalidate_all_weeks_leaves_other_users(self, coordinator):
        await coordinator.request("clo", "generate_module", "user-1", 3)
        await coordinator.request("clo", "generate_module", "user-1", 4)
        await coordinator.request("clo", "generate_module", "user-2", 3)

        assert coordinator.invalidate("user-1") == 2
        assert coordinator.get_stats()["size"] == 1

    @pytest.mark.asyncio
    async def test_invalidated_in_flight_call_does_not_repopulate_cache(self, coordinator, fake_gateway):
        fake_gateway.gate = asyncio.Event()
        pending = asyncio.ensure_future(coordinator.request("clo", "generate_module", "user-1", 3))
        await asyncio.sleep(0)

        coordinator.invalidate("user-1", 3)
        fake_gateway.gate.set()
        result = await pending

        assert result.success
        key = RequestCoordinator.make_key("user-1", "clo", "generate_module", 3)
        assert coordinator.peek(key) is None

        await coordinator.request("clo", "generate_module", "user-1", 3)
        assert len(fake_gateway.calls) == 2

    @pytest.mark.asyncio
    async def test_clear(self, coordinator):
        await coordinator.request("clo", "generate_module", "user-1", 3)
        coordinator.clear()

        stats = coordinator.get_stats()
        assert stats["size"] == 0
        assert stats["in_flight"] == 0
        assert stats["ttl_seconds"] == 30
