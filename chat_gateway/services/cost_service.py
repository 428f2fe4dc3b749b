"""Compute spend for the inference instance, from AWS Cost Explorer."""

from __future__ import annotations

import asyncio
from datetime import UTC, date, datetime, timedelta
from typing import Any, Callable, Dict

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from chat_gateway.config.settings import Settings
from chat_gateway.core.exceptions import CostReportError
from chat_gateway.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SERVICE = "Amazon Elastic Compute Cloud - Compute"


def _utc_today() -> date:
    return datetime.now(UTC).date()


class CostReporter:
    """Yesterday's and month-to-date unblended cost for one AWS service.

    Both figures cover whole UTC days up to the end of yesterday; Cost
    Explorer has no data for the current day yet.
    """

    def __init__(
        self,
        client: Any = None,
        *,
        region: str = "us-east-1",
        service_name: str = DEFAULT_SERVICE,
        today: Callable[[], date] = _utc_today,
    ):
        self._client = client or boto3.client(
            "ce",
            region_name=region,
            config=Config(retries={"mode": "standard", "max_attempts": 2}),
        )
        self.service_name = service_name
        self._today = today

    @classmethod
    def from_settings(cls, settings: Settings) -> "CostReporter":
        return cls(region=settings.cost_explorer_region, service_name=settings.cost_service_name)

    def _cost_sync(self, start: date, end: date, granularity: str) -> float:
        response = self._client.get_cost_and_usage(
            TimePeriod={"Start": start.isoformat(), "End": end.isoformat()},
            Granularity=granularity,
            Metrics=["UnblendedCost"],
            Filter={"Dimensions": {"Key": "SERVICE", "Values": [self.service_name]}},
        )
        results = response.get("ResultsByTime") or []
        amount = (
            results[0].get("Total", {}).get("UnblendedCost", {}).get("Amount")
            if results
            else None
        )
        return round(float(amount or 0), 2)

    async def get_costs(self) -> Dict[str, float]:
        """Return ``{"yesterday": float, "month": float}`` in USD.

        Raises:
            CostReportError: If Cost Explorer rejects or fails the query.
        """
        today = self._today()
        yesterday = today - timedelta(days=1)
        month_start = today.replace(day=1)

        try:
            daily = await asyncio.to_thread(self._cost_sync, yesterday, today, "DAILY")
            # On the 1st the month-to-date window is empty.
            monthly = 0.0
            if month_start < today:
                monthly = await asyncio.to_thread(self._cost_sync, month_start, today, "MONTHLY")
        except (ClientError, BotoCoreError) as exc:
            logger.error("Cost Explorer query failed", data={"error": str(exc)})
            raise CostReportError(f"Cost report unavailable: {exc}") from exc

        return {"yesterday": daily, "month": monthly}
