"""Ollama model management on the managed instance: list, pull, delete."""

from __future__ import annotations

import json
from typing import Any, Dict

import httpx

from chat_gateway.config.settings import Settings
from chat_gateway.core.exceptions import OllamaError
from chat_gateway.core.logging import get_logger
from chat_gateway.services.instance_service import InstanceService

logger = get_logger(__name__)


def _unreachable(exc: Exception) -> OllamaError:
    logger.warning("Ollama request failed", data={"error": f"{type(exc).__name__}: {exc}"})
    return OllamaError(f"Ollama is unreachable: {type(exc).__name__}")


class ModelService:
    """Thin client for the Ollama model endpoints.

    Every call resolves the base URL through ``InstanceService`` so the
    cached public IP is shared with the status route.
    """

    def __init__(
        self,
        instances: InstanceService,
        *,
        request_timeout_seconds: float = 30,
        pull_timeout_seconds: float = 1800,
    ):
        self.instances = instances
        self.request_timeout_seconds = request_timeout_seconds
        self.pull_timeout_seconds = pull_timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings, instances: InstanceService) -> "ModelService":
        return cls(
            instances,
            request_timeout_seconds=settings.ollama_request_timeout_seconds,
            pull_timeout_seconds=settings.ollama_pull_timeout_seconds,
        )

    async def list_models(self) -> Dict[str, Any]:
        """Return Ollama's ``/api/tags`` payload unchanged."""
        base_url = await self.instances.get_ollama_url()
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.request_timeout_seconds)) as client:
                response = await client.get(f"{base_url}/api/tags")
        except httpx.TransportError as exc:
            raise _unreachable(exc) from exc
        if not response.is_success:
            raise OllamaError(
                f"Ollama API error: {response.status_code} {response.reason_phrase}",
                upstream_status=response.status_code,
            )
        return response.json()

    async def pull_model(self, name: str) -> Dict[str, Any]:
        """Pull ``name`` and block until Ollama finishes streaming progress.

        Returns:
            ``{"status": <last status line>}``, ``"success"`` if none was sent.

        Raises:
            OllamaError: On an HTTP error or an ``error`` line in the stream.
        """
        base_url = await self.instances.get_ollama_url()
        timeout = httpx.Timeout(self.request_timeout_seconds, read=self.pull_timeout_seconds)
        last_status = ""

        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                async with client.stream(
                    "POST",
                    f"{base_url}/api/pull",
                    json={"name": name, "stream": True},
                ) as response:
                    if not response.is_success:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        raise OllamaError(
                            f"Ollama API error: {response.status_code} - {body}",
                            upstream_status=response.status_code,
                        )

                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            data = json.loads(line)
                        except json.JSONDecodeError:
                            continue
                        if data.get("error"):
                            raise OllamaError(f"Model pull failed: {data['error']}")
                        if data.get("status"):
                            last_status = data["status"]
        except httpx.TransportError as exc:
            raise _unreachable(exc) from exc

        logger.info("Model pulled", data={"model": name, "status": last_status or "success"})
        return {"status": last_status or "success"}

    async def delete_model(self, name: str) -> None:
        base_url = await self.instances.get_ollama_url()
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.request_timeout_seconds)) as client:
                response = await client.request("DELETE", f"{base_url}/api/delete", json={"name": name})
        except httpx.TransportError as exc:
            raise _unreachable(exc) from exc
        if not response.is_success:
            raise OllamaError(
                f"Ollama API error: {response.status_code} {response.reason_phrase}",
                upstream_status=response.status_code,
            )
        logger.info("Model deleted", data={"model": name})
