# crm_enrichment/services/connectors/firecrawl.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import enum
import logging

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ...core.config import get_settings

logger = logging.getLogger(__name__)


class ResearchAgentError(RuntimeError):
    """Submission to the research agent was rejected or malformed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AgentJobState(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    # Status endpoint unreachable or non-2xx; callers treat it as still processing
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class AgentSubmission:
    job_id: Optional[str] = None
    immediate_result: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class AgentJobStatus:
    state: AgentJobState
    data: Optional[Dict[str, Any]] = None


class FirecrawlAgentClient:
    """
    Client for the Firecrawl `/agent` research API.

    - `start_job` submits prompt + JSON schema (+ optional seed URLs). The agent
      either answers synchronously (`{success, data}`) or hands back a job id
      (`{id}`) to be polled.
    - `get_job_status` never raises for agent-side problems: non-2xx responses
      and transport errors come back as `AgentJobState.UNAVAILABLE` so a flaky
      status endpoint cannot end a job early.
    """

    name = "firecrawl"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.firecrawl.dev/v2",
        model: str = "spark-1-mini",
        timeout: float = 30,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self._transport)

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    def _post_agent(self, payload: Dict[str, Any]) -> httpx.Response:
        with self._client() as client:
            return client.post(
                f"{self.base_url}/agent",
                headers=self._headers(),
                json=payload,
            )

    def start_job(
        self,
        prompt: str,
        schema: Dict[str, Any],
        urls: Optional[List[str]] = None,
    ) -> AgentSubmission:
        payload: Dict[str, Any] = {
            "prompt": prompt,
            "schema": schema,
            "model": self.model,
        }
        if urls:
            payload["urls"] = urls

        resp = self._post_agent(payload)

        if resp.status_code < 200 or resp.status_code >= 300:
            raise ResearchAgentError(
                f"Firecrawl agent error: {resp.status_code} - {resp.text}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise ResearchAgentError(f"Firecrawl agent returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ResearchAgentError("Firecrawl agent returned a non-object body")

        # Some requests are answered immediately
        if data.get("success") and data.get("data"):
            return AgentSubmission(immediate_result=data["data"])

        job_id = data.get("id")
        if not job_id:
            raise ResearchAgentError("Firecrawl agent did not return a job ID")

        return AgentSubmission(job_id=str(job_id))

    def get_job_status(self, agent_job_id: str) -> AgentJobStatus:
        try:
            with self._client() as client:
                resp = client.get(
                    f"{self.base_url}/agent/{agent_job_id}",
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            logger.warning(
                "Firecrawl status check failed for agent job %s: %s",
                agent_job_id,
                e,
                extra={"step": "agent_status"},
            )
            return AgentJobStatus(state=AgentJobState.UNAVAILABLE)

        if resp.status_code < 200 or resp.status_code >= 300:
            logger.warning(
                "Firecrawl status check returned %s for agent job %s",
                resp.status_code,
                agent_job_id,
                extra={"step": "agent_status"},
            )
            return AgentJobStatus(state=AgentJobState.UNAVAILABLE)

        try:
            data = resp.json()
        except ValueError:
            return AgentJobStatus(state=AgentJobState.UNAVAILABLE)
        if not isinstance(data, dict):
            return AgentJobStatus(state=AgentJobState.UNAVAILABLE)

        status = data.get("status")
        if status == "completed" and data.get("data"):
            return AgentJobStatus(state=AgentJobState.COMPLETED, data=data["data"])
        if status == "failed":
            return AgentJobStatus(state=AgentJobState.FAILED)
        return AgentJobStatus(state=AgentJobState.PROCESSING)


def get_research_agent() -> FirecrawlAgentClient | None:
    """
    Build the agent client from settings, or None when no API key is configured.
    """
    settings = get_settings()
    if not settings.FIRECRAWL_API_KEY:
        return None
    return FirecrawlAgentClient(
        api_key=settings.FIRECRAWL_API_KEY.strip(),
        base_url=settings.FIRECRAWL_BASE_URL,
        model=settings.FIRECRAWL_AGENT_MODEL,
        timeout=settings.FIRECRAWL_TIMEOUT_SECONDS,
    )
