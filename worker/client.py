"""Async client for the chat and completion endpoints of a local llama-server."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

import httpx

from worker import constants
from worker.errors import RequestFailed, WorkerUnavailable
from worker.retry import RetryPolicy, Sleep, linear_backoff
from worker.schemas import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    CompletionRequest,
    CompletionResponse,
    decode_body,
)
from worker.settings import WorkerSettings

logger = logging.getLogger("llamahost.client")


async def probe_health(client: httpx.AsyncClient, base_url: str, *, timeout: float) -> bool:
    """Return True when the worker answers its health check with a status below 500."""
    url = f"{base_url}{constants.HEALTH_PATH}"
    try:
        response = await client.head(url, timeout=httpx.Timeout(timeout))
    except httpx.HTTPError as exc:
        logger.debug("Health check against %s failed: %s", url, exc)
        return False
    logger.debug("Health check against %s returned %s", url, response.status_code)
    return response.status_code < 500


class InferenceClient:
    """Issue chat and raw completion requests against a running worker.

    Until the first successful exchange every call waits for the worker with
    a linear backoff (0, 1, ... 9 seconds); afterwards requests go straight
    through.
    """

    def __init__(
        self,
        base_url: str,
        *,
        settings: WorkerSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.settings = settings or WorkerSettings()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(self.settings.request_timeout))
        self._sleep = sleep
        self._connected = False
        self.readiness_policy = RetryPolicy(
            max_attempts=self.settings.first_call_attempts,
            backoff=linear_backoff,
        )

    @property
    def connected(self) -> bool:
        """True once any request has completed successfully."""
        return self._connected

    async def chat(
        self,
        messages: Iterable[ChatMessage | Mapping[str, Any]],
        max_tokens: int | None = None,
    ) -> str:
        """Send an ordered chat transcript and return the trimmed reply."""
        request = ChatRequest.build(
            messages,
            max_tokens,
            default_max_tokens=self.settings.max_tokens,
            stop=self.settings.stop_sequences,
        )
        payload = await self._post(constants.CHAT_PATH, request.to_payload())
        reply = ChatResponse.from_payload(payload)
        self._connected = True
        return reply.content

    async def complete(self, prompt: str, max_tokens: int | None = None) -> str:
        """Continue a raw prompt and return the trimmed completion."""
        request = CompletionRequest.build(
            prompt,
            max_tokens,
            default_max_tokens=self.settings.max_tokens,
            stop=self.settings.stop_sequences,
        )
        payload = await self._post(constants.COMPLETION_PATH, request.to_payload())
        reply = CompletionResponse.from_payload(payload)
        self._connected = True
        return reply.content

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def _ensure_reachable(self) -> None:
        if self._connected:
            return

        async def _probe() -> bool:
            return await probe_health(self._client, self.base_url, timeout=self.settings.health_timeout)

        if not await self.readiness_policy.run(_probe, sleep=self._sleep):
            logger.warning(
                "llama-server at %s did not answer after %s attempts",
                self.base_url,
                self.readiness_policy.max_attempts,
            )
            raise WorkerUnavailable("timed out while waiting for llama.cpp")

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        await self._ensure_reachable()
        url = f"{self.base_url}{path}"
        logger.debug("POST %s (max tokens %s)", url, payload.get("max_tokens", payload.get("n_predict")))
        try:
            response = await self._client.post(
                url,
                json=payload,
                timeout=httpx.Timeout(self.settings.request_timeout),
            )
        except httpx.HTTPError as exc:
            raise RequestFailed(f"request to {url} failed: {exc}") from exc
        return decode_body(response.content, response.status_code)


__all__ = ["InferenceClient", "probe_health"]
