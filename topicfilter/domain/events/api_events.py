"""Domain Events related to provider calls and resilience.

Emitted by the request queue, the retry controller and the classification
service when calls are deferred, retried, fail, or succeed.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class DomainEvent:
    """Base class for domain events."""


@dataclass
class CallDeferred(DomainEvent):
    """A queued call is waiting for the minimum interval to elapse."""
    provider: str
    wait_seconds: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class CallSucceeded(DomainEvent):
    """A provider call returned a usable response."""
    provider: str
    latency_ms: float
    started_at: float  # Queue clock reading when the call was dispatched
    timestamp: float = field(default_factory=time.time)


@dataclass
class CallFailed(DomainEvent):
    """A provider call failed and the failure was handed to the caller."""
    provider: str
    error_type: str
    error_message: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class RateLimitHit(DomainEvent):
    """The provider signalled a rate limit and the queue slowed down."""
    provider: str
    suggested_wait_seconds: float
    new_min_interval: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class RetryScheduled(DomainEvent):
    """A failed attempt will be retried after a delay."""
    attempt_number: int
    delay_seconds: float
    error_type: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class BatchDefaulted(DomainEvent):
    """A batch could not be classified and fell back to 'keep visible'."""
    batch_size: int
    reason: str
    timestamp: float = field(default_factory=time.time)


EventListener = Callable[[DomainEvent], None]


def log_event(event: DomainEvent) -> None:
    """Default listener: events only go to the debug log."""
    logger.debug(f"EVENT: {event}")


def dispatch_event(listener: Optional[EventListener], event: DomainEvent) -> None:
    """Hands an event to a listener without letting listener bugs break callers."""
    if listener is None:
        return
    try:
        listener(event)
    except Exception as e:
        logger.warning(f"Event listener failed for {type(event).__name__}: {e}", exc_info=True)
