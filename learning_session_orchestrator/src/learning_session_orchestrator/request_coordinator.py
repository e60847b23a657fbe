"""
Request Coordinator

Sits in front of the AgentGateway and guarantees at most one outstanding
network call per (user, action, week) key:

1. A fresh cached success for the key is returned immediately.
2. Otherwise a caller joins the call already in flight for the key.
3. Otherwise a new call is started and registered as in flight.

Only successes are cached (30 s by default), so a failure is retryable on
the very next request. Expired entries are evicted lazily on lookup.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from learning_session_orchestrator.agents import get_agent
from learning_session_orchestrator.gateway import AgentGateway, AgentResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentRequestKey:
    """Identifies one logical unit of orchestration work."""
    user_id: str
    action: str
    week_number: int


@dataclass(frozen=True)
class CachedResult:
    """Cached agent success."""
    result: AgentResult
    expires_at: float


class RequestCoordinator:
    """
    In-flight coalescing plus a short-lived TTL cache for agent calls.

    One instance is shared by every session in a process; tests build their
    own isolated instances.
    """

    def __init__(
        self,
        gateway: AgentGateway,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the coordinator.

        Args:
            gateway: Transport used for cache misses
            ttl_seconds: How long a success is reused
            clock: Monotonic clock in seconds (injectable for tests)
        """
        self.gateway = gateway
        self.ttl_seconds = ttl_seconds
        self._clock = clock

        self._cache: Dict[AgentRequestKey, CachedResult] = {}
        self._in_flight: Dict[AgentRequestKey, "asyncio.Task[AgentResult]"] = {}

        self.hits = 0
        self.joins = 0
        self.misses = 0

    @staticmethod
    def make_key(
        user_id: str,
        agent_name: str,
        action: str,
        week_number: int,
        scope: Optional[str] = None
    ) -> AgentRequestKey:
        """
        Build the key for a request.

        The action part is qualified with the agent name. Conversational
        turns pass a scope (e.g. the turn number) so distinct messages never
        coalesce into one call.
        """
        qualified = f"{agent_name}.{action}"
        if scope is not None:
            qualified = f"{qualified}#{scope}"
        return AgentRequestKey(user_id=user_id, action=qualified, week_number=week_number)

    def _lookup(self, key: AgentRequestKey) -> Optional[AgentResult]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._cache[key]
            return None
        return entry.result

    def peek(self, key: AgentRequestKey) -> Optional[AgentResult]:
        """Return the cached result for a key without touching stats."""
        return self._lookup(key)

    def is_in_flight(self, key: AgentRequestKey) -> bool:
        return key in self._in_flight

    async def request(
        self,
        agent_name: str,
        action: str,
        user_id: str,
        week_number: int,
        payload: Optional[Dict[str, Any]] = None,
        scope: Optional[str] = None
    ) -> AgentResult:
        """
        Request an agent result, reusing cached or in-flight work.

        Args:
            agent_name: Registered agent identity
            action: Agent action name
            user_id: User the request is made for
            week_number: Program week number
            payload: Action payload (only used when a new call is issued)
            scope: Optional key discriminator for conversational turns

        Returns:
            The AgentResult shared by every caller of this key

        Raises:
            ConfigurationError: Unknown agent identity
        """
        get_agent(agent_name)
        key = self.make_key(user_id, agent_name, action, week_number, scope)

        cached = self._lookup(key)
        if cached is not None:
            self.hits += 1
            logger.debug(f"💾 [RequestCoordinator] Cache hit for {key.action} (week {week_number})")
            return cached

        task = self._in_flight.get(key)
        if task is not None:
            self.joins += 1
            logger.debug(f"🔗 [RequestCoordinator] Joining in-flight {key.action} (week {week_number})")
            return await asyncio.shield(task)

        self.misses += 1
        task = asyncio.ensure_future(
            self._run(key, agent_name, action, user_id, week_number, payload)
        )
        self._in_flight[key] = task
        return await asyncio.shield(task)

    async def _run(
        self,
        key: AgentRequestKey,
        agent_name: str,
        action: str,
        user_id: str,
        week_number: int,
        payload: Optional[Dict[str, Any]]
    ) -> AgentResult:
        this_task = asyncio.current_task()
        try:
            result = await self.gateway.call(agent_name, action, user_id, week_number, payload)
            # A call orphaned by invalidate() must not repopulate the cache
            if result.success and self._in_flight.get(key) is this_task:
                self._cache[key] = CachedResult(result=result, expires_at=self._clock() + self.ttl_seconds)
            elif not result.success:
                logger.info(f"⚠️ [RequestCoordinator] {key.action} failed, not cached: {result.error}")
            return result
        finally:
            if self._in_flight.get(key) is this_task:
                del self._in_flight[key]

    def invalidate(self, user_id: str, week_number: Optional[int] = None) -> int:
        """
        Drop cached results (and forget in-flight registrations) for a user.

        Calls already in flight still resolve for their current callers, but
        new requests for the same key issue a fresh call.

        Args:
            user_id: User whose entries are dropped
            week_number: Restrict to one week (all weeks if None)

        Returns:
            Number of cached entries removed
        """
        def matches(key: AgentRequestKey) -> bool:
            return key.user_id == user_id and (week_number is None or key.week_number == week_number)

        stale = [key for key in self._cache if matches(key)]
        for key in stale:
            del self._cache[key]
        for key in [key for key in self._in_flight if matches(key)]:
            del self._in_flight[key]

        if stale:
            logger.info(f"🧹 [RequestCoordinator] Invalidated {len(stale)} cached result(s) for user {user_id}")
        return len(stale)

    def clear(self):
        """Clear all cached results and in-flight registrations."""
        self._cache.clear()
        self._in_flight.clear()

    def get_stats(self) -> Dict[str, Any]:
        """Get coordinator statistics."""
        return {
            "size": len(self._cache),
            "in_flight": len(self._in_flight),
            "hits": self.hits,
            "joins": self.joins,
            "misses": self.misses,
            "ttl_seconds": self.ttl_seconds,
        }
