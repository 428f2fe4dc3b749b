"""Managed inference instance: state, start/stop and Ollama endpoint discovery."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import boto3
import httpx
from botocore.config import Config

from chat_gateway.config.settings import Settings
from chat_gateway.core.exceptions import InstanceError
from chat_gateway.core.logging import get_logger
from chat_gateway.services.liveness_service import LivenessSignal

logger = get_logger(__name__)


class RunState(str, Enum):
    """Run state reported by the resource manager."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "RunState":
        try:
            return cls(value or "unknown")
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class ManagedResourceState:
    """Snapshot of the instance as reported by the resource manager."""

    run_state: RunState
    started_at: Optional[datetime] = None
    public_ip: Optional[str] = None


class ResourceManager(Protocol):
    """Describe/start/stop one managed instance. All calls are idempotent."""

    async def describe(self) -> ManagedResourceState:
        ...

    async def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...


class Ec2ResourceManager(ResourceManager):
    """EC2-backed resource manager.

    boto3 is synchronous, so calls run in a worker thread. The retry budget
    is kept small: a failed stop is picked up by the next autostop tick.
    """

    def __init__(self, instance_id: str, region: Optional[str] = None, client: Any = None):
        if not instance_id:
            raise ValueError("instance_id is required")
        self.instance_id = instance_id
        self._client = client or boto3.client(
            "ec2",
            region_name=region,
            config=Config(retries={"mode": "standard", "max_attempts": 2}),
        )

    def _describe_sync(self) -> ManagedResourceState:
        result = self._client.describe_instances(InstanceIds=[self.instance_id])
        reservations = result.get("Reservations") or []
        instances = reservations[0].get("Instances") if reservations else None
        if not instances:
            raise InstanceError("Instance not found", instance_id=self.instance_id)
        instance = instances[0]
        launch_time = instance.get("LaunchTime")
        if isinstance(launch_time, datetime) and launch_time.tzinfo is None:
            launch_time = launch_time.replace(tzinfo=UTC)
        return ManagedResourceState(
            run_state=RunState.parse((instance.get("State") or {}).get("Name")),
            started_at=launch_time,
            public_ip=instance.get("PublicIpAddress"),
        )

    async def describe(self) -> ManagedResourceState:
        return await asyncio.to_thread(self._describe_sync)

    async def start(self) -> None:
        await asyncio.to_thread(self._client.start_instances, InstanceIds=[self.instance_id])

    async def stop(self) -> None:
        await asyncio.to_thread(self._client.stop_instances, InstanceIds=[self.instance_id])


def build_resource_manager(settings: Settings) -> Ec2ResourceManager:
    return Ec2ResourceManager(settings.instance_id, region=settings.aws_region)


class InstanceService:
    """Instance status/start/stop for the HTTP API, plus Ollama URL discovery."""

    def __init__(
        self,
        manager: ResourceManager,
        liveness: LivenessSignal,
        *,
        ollama_port: int = 11434,
        url_cache_seconds: int = 300,
        ready_timeout_seconds: float = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.manager = manager
        self.liveness = liveness
        self.ollama_port = ollama_port
        self.url_cache_seconds = url_cache_seconds
        self.ready_timeout_seconds = ready_timeout_seconds
        self._clock = clock
        self._url_cache: Optional[Tuple[str, float]] = None

    @classmethod
    def from_settings(
        cls, settings: Settings, manager: ResourceManager, liveness: LivenessSignal
    ) -> "InstanceService":
        return cls(
            manager,
            liveness,
            ollama_port=settings.ollama_port,
            url_cache_seconds=settings.ollama_url_cache_seconds,
            ready_timeout_seconds=settings.ollama_ready_timeout_seconds,
        )

    def clear_url_cache(self) -> None:
        self._url_cache = None

    async def get_ollama_url(self) -> str:
        """Return the Ollama base URL, cached for ``url_cache_seconds``."""
        now = self._clock()
        if self._url_cache and now - self._url_cache[1] < self.url_cache_seconds:
            return self._url_cache[0]

        state = await self.manager.describe()
        if not state.public_ip:
            raise InstanceError("Instance has no public IP")

        url = f"http://{state.public_ip}:{self.ollama_port}"
        self._url_cache = (url, now)
        return url

    async def check_ollama_ready(self) -> bool:
        """Probe the Ollama root endpoint; any failure means not ready."""
        try:
            url = await self.get_ollama_url()
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.ready_timeout_seconds)) as client:
                response = await client.get(url)
            return response.is_success
        except Exception as exc:
            logger.debug("Ollama readiness probe failed", data={"error": str(exc)})
            return False

    async def get_status(self) -> Dict[str, Any]:
        """Describe the instance and record UI activity in one round."""
        state, _ = await asyncio.gather(
            self.manager.describe(),
            self.liveness.record_activity(),
        )
        ready = await self.check_ollama_ready() if state.run_state == RunState.RUNNING else False
        return {
            "state": state.run_state.value,
            "publicIp": state.public_ip,
            "ollamaReady": ready,
        }

    async def start(self) -> None:
        await self.manager.start()
        self.clear_url_cache()
        logger.info("Instance start requested")

    async def stop(self) -> None:
        await self.manager.stop()
        self.clear_url_cache()
        logger.info("Instance stop requested")
