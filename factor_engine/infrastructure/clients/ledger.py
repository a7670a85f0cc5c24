"""Ledger webhook client with exponential backoff retry logic"""

import asyncio
import logging
from typing import Any, Dict, List

import httpx

from factor_engine.config import settings
from factor_engine.infrastructure.observability.metrics import webhook_latency_histogram, webhook_failure_counter

logger = logging.getLogger(__name__)


def build_settlement_event(operation, postings: List[Any]) -> Dict[str, Any]:
    """Webhook payload announcing a concluded operation and its postings"""
    return {
        "event": "FACTOR_OPERATION_COMPLETED",
        "operation_id": str(operation.id),
        "operation_number": operation.operation_number,
        "version_id": str(operation.current_version_id),
        "postings": [
            {
                "posting_key": posting.posting_key,
                "kind": posting.kind,
                "category": posting.category,
                "amount_cents": posting.amount_cents,
            }
            for posting in postings
        ],
    }


class LedgerClient:
    """Client for sending settlement events to the ledger service"""

    def __init__(self, webhook_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.webhook_url = webhook_url or settings.ledger_webhook_url
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base
        self.timeout = settings.http_timeout_seconds
        self.transport = transport

    async def send_settlement_event(self, payload: Dict[str, Any]) -> None:
        """
        Send settlement event to ledger with retry logic.

        Runs after the conclude transaction committed; a delivery failure never
        touches operation state.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s, 16s (base^attempt)
        - Retries on 5xx errors and network failures
        - Tracks latency histogram and failure counter

        Args:
            payload: Event data to send to ledger
        """
        attempt = 0
        async with httpx.AsyncClient(transport=self.transport) as client:
            while attempt < self.max_retries:
                try:
                    with webhook_latency_histogram.time():
                        response = await client.post(
                            self.webhook_url,
                            json=payload,
                            timeout=self.timeout,
                        )
                        response.raise_for_status()
                        return  # Success

                except (httpx.HTTPStatusError, httpx.RequestError) as e:
                    attempt += 1
                    webhook_failure_counter.inc()

                    if attempt >= self.max_retries:
                        # Final failure after all retries
                        logger.error(
                            f"Ledger webhook delivery failed after {attempt} attempts: {e}",
                            extra={"operation_id": payload.get("operation_id")},
                        )
                        raise

                    # Exponential backoff: 1s, 2s, 4s, 8s, 16s
                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)
