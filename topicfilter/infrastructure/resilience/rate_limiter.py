"""Serialized, rate-limited request queue.

Controls the cadence of outgoing calls for one provider client: requests
are drained one at a time from a FIFO queue, never closer together than a
minimum interval. When the provider reports a rate limit, the interval grows
to the provider's suggested wait and the request goes back to the head.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Optional

from topicfilter.domain.errors import DeadlineExceededError, RateLimitedError
from topicfilter.domain.events.api_events import (
    CallDeferred,
    CallFailed,
    CallSucceeded,
    EventListener,
    RateLimitHit,
    dispatch_event,
    log_event,
)
from topicfilter.domain.interfaces.completion_provider import CompletionProvider
from topicfilter.domain.models.completion import CompletionRequest, CompletionResponse

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUEUES = 3

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


@dataclass
class QueueItem:
    """A request waiting for its turn, plus the future its caller awaits."""
    request: CompletionRequest
    future: "asyncio.Future[CompletionResponse]"
    enqueued_at: float
    deadline: Optional[float] = None
    requeues: int = 0


class RequestQueue:
    """Fully serialized FIFO queue in front of one CompletionProvider."""

    def __init__(
        self,
        provider: CompletionProvider,
        min_interval: Optional[float] = None,
        *,
        max_requeues: Optional[int] = DEFAULT_MAX_REQUEUES,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
        listener: Optional[EventListener] = log_event,
    ):
        """Initializes the queue.

        Args:
            provider: The adapter every drained request is sent to.
            min_interval: Minimum seconds between two calls; provider default if None.
            max_requeues: Rate-limit requeues allowed per request before the
                RateLimitedError is handed to the caller. None means unlimited.
            clock: Monotonic clock, in seconds. Deadlines use the same clock.
            sleep: Coroutine used for every suspension.
            listener: Receives domain events.
        """
        self.provider = provider
        self._min_interval = provider.default_min_interval if min_interval is None else float(min_interval)
        if self._min_interval < 0:
            raise ValueError("min_interval must be non-negative.")
        self.max_requeues = max_requeues
        self._clock = clock
        self._sleep = sleep
        self._listener = listener

        self._last_call_time: Optional[float] = None
        self._items: Deque[QueueItem] = deque()
        self._in_flight: Optional[QueueItem] = None
        self._drain_task: Optional["asyncio.Task[None]"] = None
        logger.info(f"RequestQueue initialized for {provider.provider_name}: min_interval={self._min_interval:.2f}s")

    # --- Inspection ---

    @property
    def min_interval(self) -> float:
        return self._min_interval

    @property
    def last_call_time(self) -> Optional[float]:
        return self._last_call_time

    @property
    def pending(self) -> int:
        return len(self._items)

    @property
    def is_draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    def get_wait_time(self) -> float:
        """Seconds until the next call may start."""
        if self._last_call_time is None:
            return 0.0
        return max(0.0, self._last_call_time + self._min_interval - self._clock())

    # --- Public API ---

    def enqueue(self, request: CompletionRequest, deadline: Optional[float] = None) -> "asyncio.Future[CompletionResponse]":
        """Appends a request to the tail and starts draining if idle.

        Args:
            request: The completion request.
            deadline: Absolute time on the queue clock after which the request
                is failed with DeadlineExceededError instead of being sent.

        Returns:
            A future resolved with the provider's response or its error.
            Cancelling the future abandons the request.
        """
        loop = asyncio.get_running_loop()
        future: "asyncio.Future[CompletionResponse]" = loop.create_future()
        self._items.append(QueueItem(request=request, future=future, enqueued_at=self._clock(), deadline=deadline))
        if not self.is_draining:
            self._drain_task = loop.create_task(self._drain())
        return future

    async def submit(self, request: CompletionRequest, deadline: Optional[float] = None) -> CompletionResponse:
        """Enqueues a request and waits for its result."""
        return await self.enqueue(request, deadline)

    async def aclose(self) -> None:
        """Stops draining and cancels every request that has not settled."""
        task = self._drain_task
        in_flight = self._in_flight
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._drain_task = None
        if in_flight is not None and not in_flight.future.done():
            in_flight.future.cancel()
        self._in_flight = None
        while self._items:
            item = self._items.popleft()
            if not item.future.done():
                item.future.cancel()
        logger.debug(f"RequestQueue for {self.provider.provider_name} closed.")

    # --- Drain Loop ---

    def _discard_abandoned(self) -> None:
        while self._items and self._items[0].future.done():
            self._items.popleft()
            logger.debug("Dropped abandoned request from queue head.")

    async def _drain(self) -> None:
        provider_name = self.provider.provider_name
        while True:
            self._discard_abandoned()
            if not self._items:
                return

            wait = self.get_wait_time()
            if wait > 0:
                dispatch_event(self._listener, CallDeferred(provider=provider_name, wait_seconds=wait))
                logger.debug(f"Waiting {wait:.2f}s before next {provider_name} call.")
                await self._sleep(wait)
                self._discard_abandoned()
                if not self._items:
                    return

            item = self._items.popleft()
            started_at = self._clock()
            queued_for = started_at - item.enqueued_at
            if item.deadline is not None and started_at >= item.deadline:
                item.future.set_exception(
                    DeadlineExceededError(f"Request deadline passed after {queued_for:.2f}s in the queue.")
                )
                continue

            logger.debug(f"Sending {provider_name} request after {queued_for:.2f}s in the queue.")
            self._in_flight = item
            try:
                response = await self.provider.complete(item.request)
            except RateLimitedError as e:
                await self._handle_rate_limit(item, e)
                continue
            except Exception as e:
                # Any other failure is the caller's to handle
                self._last_call_time = self._clock()
                dispatch_event(
                    self._listener,
                    CallFailed(provider=provider_name, error_type=type(e).__name__, error_message=str(e)),
                )
                if not item.future.done():
                    item.future.set_exception(e)
                continue
            finally:
                self._in_flight = None

            self._last_call_time = self._clock()
            dispatch_event(
                self._listener,
                CallSucceeded(
                    provider=provider_name,
                    latency_ms=(self._last_call_time - started_at) * 1000,
                    started_at=started_at,
                ),
            )
            if not item.future.done():
                item.future.set_result(response)

    async def _handle_rate_limit(self, item: QueueItem, error: RateLimitedError) -> None:
        suggested = error.retry_after if error.retry_after is not None else self._min_interval
        self._min_interval = max(self._min_interval, suggested)
        dispatch_event(
            self._listener,
            RateLimitHit(
                provider=self.provider.provider_name,
                suggested_wait_seconds=suggested,
                new_min_interval=self._min_interval,
            ),
        )

        if self.max_requeues is not None and item.requeues >= self.max_requeues:
            logger.warning(
                f"Request rate limited {item.requeues + 1} times by {self.provider.provider_name}; "
                f"handing the error back to the caller."
            )
            if not item.future.done():
                item.future.set_exception(error)
        else:
            item.requeues += 1
            self._items.appendleft(item)
            logger.warning(
                f"Rate limit hit on {self.provider.provider_name}, waiting {suggested:.2f}s "
                f"(min_interval now {self._min_interval:.2f}s)."
            )

        await self._sleep(suggested)
