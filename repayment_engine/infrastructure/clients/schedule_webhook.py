"""Schedule webhook client with exponential backoff retry logic"""

import httpx
import asyncio
from typing import Dict, Any, Optional
from repayment_engine.config import settings
from repayment_engine.infrastructure.observability.metrics import webhook_latency_histogram, webhook_failure_counter


class ScheduleWebhookClient:
    """Client for sending schedule-changed events to the payment rails collaborator"""

    def __init__(
        self,
        webhook_url: str | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
    ):
        self.webhook_url = webhook_url or settings.schedule_webhook_url
        self.transport = transport
        self.max_retries = settings.webhook_max_retries if max_retries is None else max_retries
        self.backoff_base = settings.webhook_backoff_base if backoff_base is None else backoff_base
        self.timeout = settings.http_timeout_seconds

    async def send_schedule_event(self, payload: Dict[str, Any]) -> None:
        """
        Send SCHEDULE_RECALCULATED event with retry logic.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s (base * 2^(attempt-1))
        - Retries on 4xx/5xx responses and network failures
        - Tracks latency histogram and failure counter

        Args:
            payload: Event data carrying the loan id, trigger and new breakdown
        """
        attempt = 0
        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
            while attempt < self.max_retries:
                try:
                    with webhook_latency_histogram.time():
                        response = await client.post(self.webhook_url, json=payload)
                        response.raise_for_status()
                        return  # Success

                except (httpx.HTTPStatusError, httpx.RequestError):
                    attempt += 1
                    webhook_failure_counter.inc()

                    if attempt >= self.max_retries:
                        # Final failure after all retries
                        raise

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)


def build_schedule_event(result) -> Dict[str, Any]:
    """JSON-safe webhook payload for a schedule change"""
    return {
        "event": "SCHEDULE_RECALCULATED",
        "loan_id": str(result.loan_id),
        "trigger": result.trigger,
        "new_remaining_balance": str(result.new_remaining_balance),
        "converged": result.converged,
        "breakdown": [
            {
                "payment_number": entry.payment_number,
                "due_date": entry.due_date.isoformat(),
                "amount": str(entry.amount),
                "interest": str(entry.interest),
                "principal": str(entry.principal),
                "remaining_balance": str(entry.remaining_balance),
            }
            for entry in result.breakdown
        ],
    }
