"""Bounded-concurrency delivery to the external email service.

The engine only talks to the network and reports per-item outcomes. Store
writes (delete on success, revert on failure) belong to the message
lifecycle.
"""

import asyncio
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx

from birthdays.config import Settings, get_settings
from birthdays.core.exceptions import DeliveryError, DeliveryRejected, DeliveryTimeout
from birthdays.core.logging import get_logger
from birthdays.core.retry import RetryConfig, retry_with_fixed_delay
from birthdays.schemas.message import ClaimedMessage, DeliveryOutcome

logger = get_logger(__name__)

SENT_STATUS = "sent"


@dataclass
class DeliveryConfig:
    """Endpoint and retry settings for one delivery engine."""

    url: str
    timeout_seconds: float = 10.0
    max_attempts: int = 3
    retry_delay_seconds: float = 1.0
    concurrency: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> "DeliveryConfig":
        return cls(
            url=settings.email_service_url,
            timeout_seconds=settings.email_service_timeout_seconds,
            max_attempts=settings.email_service_retry_attempts,
            retry_delay_seconds=settings.email_service_retry_delay_seconds,
            concurrency=settings.email_service_concurrency,
        )


class DeliveryEngine:
    """Sends claimed messages with a fixed pool of concurrent workers."""

    def __init__(self, client: httpx.AsyncClient, config: DeliveryConfig) -> None:
        self.client = client
        self.config = config
        self.retry = RetryConfig(
            max_attempts=config.max_attempts,
            delay_seconds=config.retry_delay_seconds,
            retryable_exceptions=(DeliveryError,),
        )

    async def send_once(self, item: ClaimedMessage) -> None:
        """
        Make a single delivery try.

        Raises:
            DeliveryTimeout: No complete response within the timeout
            DeliveryRejected: Transport error, non-2xx, or status other than "sent"
        """
        payload = {"email": item.recipient_address, "message": item.rendered_body}
        try:
            async with asyncio.timeout(self.config.timeout_seconds):
                response = await self.client.post(
                    self.config.url,
                    json=payload,
                    timeout=self.config.timeout_seconds,
                )
        except (TimeoutError, httpx.TimeoutException) as e:
            raise DeliveryTimeout(
                f"No response within {self.config.timeout_seconds}s"
            ) from e
        except httpx.HTTPError as e:
            raise DeliveryRejected(f"Transport error: {e}") from e

        if not response.is_success:
            raise DeliveryRejected(f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise DeliveryRejected("Response body is not JSON") from e

        status = body.get("status") if isinstance(body, dict) else None
        if status != SENT_STATUS:
            raise DeliveryRejected(f"Unexpected status {status!r}")

    async def deliver_one(self, item: ClaimedMessage) -> DeliveryOutcome:
        """Deliver one message with retries. Never raises for delivery failures."""
        attempts = 0

        def count(attempt: int) -> None:
            nonlocal attempts
            attempts = attempt

        try:
            await retry_with_fixed_delay(
                lambda: self.send_once(item),
                config=self.retry,
                operation_name=f"deliver:{item.message_id}",
                on_attempt=count,
            )
        except DeliveryError as e:
            logger.bind(
                message_id=item.message_id,
                attempts=attempts,
                error=str(e),
            ).warning("delivery_failed")
            return DeliveryOutcome(
                message_id=item.message_id, success=False, attempts=attempts, error=str(e)
            )

        logger.bind(message_id=item.message_id, attempts=attempts).debug("delivery_succeeded")
        return DeliveryOutcome(message_id=item.message_id, success=True, attempts=attempts)

    async def deliver(
        self,
        items: Sequence[ClaimedMessage],
        concurrency: int | None = None,
    ) -> list[DeliveryOutcome]:
        """
        Deliver all items with at most ``concurrency`` in flight at once.

        Each worker pulls the next queued item as soon as it finishes the
        previous one, so capacity is never left idle while work remains.

        Args:
            items: Claimed messages to send
            concurrency: Worker count, defaults to the configured concurrency

        Returns:
            One outcome per item, in the order the items were given
        """
        if not items:
            return []

        if concurrency is None:
            concurrency = self.config.concurrency
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        queue: asyncio.Queue[tuple[int, ClaimedMessage]] = asyncio.Queue()
        for index, item in enumerate(items):
            queue.put_nowait((index, item))
        results: asyncio.Queue[tuple[int, DeliveryOutcome]] = asyncio.Queue()

        async def worker() -> None:
            while True:
                try:
                    index, item = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    outcome = await self.deliver_one(item)
                except Exception as e:
                    logger.bind(message_id=item.message_id, error=str(e)).exception(
                        "delivery_crashed"
                    )
                    outcome = DeliveryOutcome(
                        message_id=item.message_id, success=False, attempts=0, error=str(e)
                    )
                results.put_nowait((index, outcome))

        workers = min(concurrency, len(items))
        await asyncio.gather(*(worker() for _ in range(workers)))

        collected: list[tuple[int, DeliveryOutcome]] = []
        while not results.empty():
            collected.append(results.get_nowait())
        return [outcome for _, outcome in sorted(collected, key=lambda pair: pair[0])]


@asynccontextmanager
async def open_delivery_engine(
    settings: Settings | None = None,
) -> AsyncGenerator[DeliveryEngine, None]:
    """Create a DeliveryEngine with its own HTTP client for one dispatch pass."""
    config = DeliveryConfig.from_settings(settings or get_settings())
    async with httpx.AsyncClient(timeout=config.timeout_seconds) as client:
        yield DeliveryEngine(client, config)
