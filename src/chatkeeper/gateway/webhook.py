"""Best-effort webhook forwarding with bounded retries."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import aiohttp
import structlog

logger = structlog.get_logger(__name__)

SECRET_HEADER = "X-Webhook-Secret"


class WebhookDispatcher:
    """Forward event payloads to an external HTTP endpoint.

    ``dispatch`` never blocks the caller: each payload gets its own delivery
    task which retries a fixed number of times and then drops the payload.
    Any HTTP response counts as delivered; only transport errors and
    timeouts are retried.
    """

    def __init__(
        self,
        url: str,
        secret: str = "",
        timeout_seconds: float = 10.0,
        max_attempts: int = 3,
        retry_delay_seconds: float = 5.0,
        session: aiohttp.ClientSession | None = None,
    ):
        self.url = url
        self.secret = secret
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._session = session
        self._owns_session = session is None
        self._tasks: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def dispatch(self, payload: dict[str, Any], attempt: int = 1) -> asyncio.Task | None:
        """Schedule delivery of payload. Returns the owned task, or None if disabled."""
        if not self.enabled:
            return None
        task = asyncio.create_task(self._deliver(payload, attempt), name="webhook-dispatch")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, payload: dict[str, Any], attempt: int) -> bool:
        body = json.dumps(payload, default=str)
        event = payload.get("event")
        while True:
            try:
                status = await self._post(body)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                error = str(exc) or type(exc).__name__
                if attempt >= self.max_attempts:
                    logger.error(
                        "webhook_dropped",
                        event_type=event,
                        attempt=attempt,
                        max_attempts=self.max_attempts,
                        error=error,
                    )
                    return False
                logger.warning(
                    "webhook_retry_scheduled",
                    event_type=event,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    retry_delay_seconds=self.retry_delay_seconds,
                    error=error,
                )
                await asyncio.sleep(self.retry_delay_seconds)
                attempt += 1
                continue

            logger.info(
                "webhook_delivered",
                event_type=event,
                status=status,
                attempt=attempt,
                max_attempts=self.max_attempts,
            )
            return True

    async def _post(self, body: str) -> int:
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers[SECRET_HEADER] = self.secret
        session = self._get_session()
        async with session.post(
            self.url,
            data=body.encode("utf-8"),
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
        ) as resp:
            await resp.read()
            return resp.status

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Cancel pending deliveries and close the owned HTTP session."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
        logger.info("webhook_dispatcher_closed", cancelled=len(tasks))
