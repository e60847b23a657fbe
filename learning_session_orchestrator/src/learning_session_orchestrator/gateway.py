"""
Agent Gateway

Transport adapter for the agent edge functions. One call, one POST, one
normalized AgentResult. No retries, no caching, no state.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from learning_session_orchestrator.agents import get_agent
from learning_session_orchestrator.config import OrchestratorSettings
from learning_session_orchestrator.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentResult:
    """Normalized agent response."""
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Optional[Dict[str, Any]]) -> "AgentResult":
        return cls(success=True, data=data if data is not None else {})

    @classmethod
    def fail(cls, error: str) -> "AgentResult":
        return cls(success=False, error=error)


class AgentGateway:
    """
    Sends requests to agent edge functions.

    Every transport failure, non-2xx status or malformed body is converted
    into a failed AgentResult; remote problems never raise out of call().
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize the gateway.

        Args:
            base_url: Project URL hosting the agent functions
            api_key: Bearer token sent with every request
            timeout: Transport timeout in seconds
            client: Pre-built httpx client (tests inject a MockTransport one)
        """
        if not base_url:
            raise ConfigurationError("AGENT_BASE_URL (or SUPABASE_URL) must be set")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings: OrchestratorSettings) -> "AgentGateway":
        return cls(
            base_url=settings.agent_base_url,
            api_key=settings.agent_api_key,
            timeout=settings.agent_timeout_seconds,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def endpoint_url(self, agent_name: str) -> str:
        agent = get_agent(agent_name)
        return f"{self.base_url}/functions/v1/{agent.endpoint}"

    async def call(
        self,
        agent_name: str,
        action: str,
        user_id: str,
        week_number: int,
        payload: Optional[Dict[str, Any]] = None
    ) -> AgentResult:
        """
        Call one agent.

        Args:
            agent_name: Registered agent identity
            action: Agent action name (e.g. "generate_module")
            user_id: User the request is made for
            week_number: Positive program week number
            payload: Action payload (opaque to the gateway)

        Returns:
            AgentResult with data on success, error message on failure

        Raises:
            ConfigurationError: Unknown agent or invalid week number
        """
        url = self.endpoint_url(agent_name)
        if isinstance(week_number, bool) or not isinstance(week_number, int) or week_number < 1:
            raise ConfigurationError(f"week_number must be a positive integer, got {week_number!r}")

        body = {
            "action": action,
            "payload": {**(payload or {}), "weekNumber": week_number},
            "userId": user_id,
        }
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        logger.debug(f"🚀 [AgentGateway] {agent_name}.{action} for user {user_id} week {week_number}")

        try:
            response = await self._get_client().post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ [AgentGateway] {agent_name}.{action} transport error: {e}")
            return AgentResult.fail(f"Agent transport error: {type(e).__name__}: {e}")

        if not response.is_success:
            logger.warning(f"⚠️ [AgentGateway] {agent_name}.{action} returned {response.status_code}")
            return AgentResult.fail(f"Agent proxy error: {response.status_code} - {response.text}")

        try:
            result = response.json()
        except ValueError:
            return AgentResult.fail(f"Malformed response from agent '{agent_name}': body is not JSON")

        if not isinstance(result, dict) or not isinstance(result.get("success"), bool):
            return AgentResult.fail(f"Malformed response from agent '{agent_name}': missing 'success'")

        if not result["success"]:
            return AgentResult.fail(result.get("error") or f"Agent '{agent_name}' reported failure")

        data = result.get("data")
        if data is not None and not isinstance(data, dict):
            # Agents occasionally answer with bare text
            data = {"text_response": data}
        return AgentResult.ok(data)

    async def aclose(self):
        """Close the underlying HTTP client if the gateway created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
