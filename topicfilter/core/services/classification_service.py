"""
Core service for classifying items against a topic set.

Coordinates the cache, the batch prompt protocol, the retry controller and
the serialized request queue. Classification never fails outward: any batch
that cannot be classified defaults to "keep visible".
"""

import asyncio
import logging
import re
import time
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from topicfilter.core.services.batch_protocol import build_prompt, parse_response
from topicfilter.domain.errors import AuthError, CacheStoreError, DeadlineExceededError, TopicFilterError
from topicfilter.domain.events.api_events import (
    BatchDefaulted,
    EventListener,
    dispatch_event,
    log_event,
)
from topicfilter.domain.interfaces.cache_store import CacheStore
from topicfilter.domain.interfaces.completion_provider import CompletionProvider
from topicfilter.domain.models.common import CacheKey, TopicLabel
from topicfilter.domain.models.topics import topic_fingerprint
from topicfilter.infrastructure.cache.ttl_cache import DEFAULT_TTL_SECONDS, TtlCache, normalize_key
from topicfilter.infrastructure.optimization.token_estimator import TokenEstimator
from topicfilter.infrastructure.resilience.api_retry import RetryController, RetryPolicy
from topicfilter.infrastructure.resilience.rate_limiter import DEFAULT_MAX_REQUEUES, RequestQueue

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_MAX_ITEM_LENGTH = 100

_WHITESPACE = re.compile(r"\s+")


class ClassificationService:
    """Classifies batches of short texts with one provider, cache and queue."""

    def __init__(
        self,
        provider: CompletionProvider,
        *,
        cache: Optional[TtlCache] = None,
        store: Optional[CacheStore] = None,
        store_topics: Optional[Sequence[str]] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_item_length: int = DEFAULT_MAX_ITEM_LENGTH,
        cache_ttl_seconds: float = DEFAULT_TTL_SECONDS,
        retry_policy: Optional[RetryPolicy] = None,
        min_interval: Optional[float] = None,
        max_requeues: Optional[int] = DEFAULT_MAX_REQUEUES,
        token_estimator: Optional[TokenEstimator] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        listener: Optional[EventListener] = log_event,
    ):
        """Initializes the ClassificationService with its dependencies.

        Args:
            provider: The completion provider adapter.
            cache: Decision cache; a new TtlCache with `cache_ttl_seconds` if None.
            store: Where the cache snapshot is loaded from and flushed to. A store
                holds decisions for one topic set only.
            store_topics: The topic set `store` belongs to. When None, the first
                topic set classified claims it. Decisions for any other topic
                set are never loaded from or flushed to the store.
            batch_size: Maximum items per completion request.
            max_item_length: Items are truncated to this many characters.
            cache_ttl_seconds: TTL for the cache built when `cache` is None.
            retry_policy: Attempt budget and delays.
            min_interval: Minimum seconds between provider calls.
            max_requeues: Rate-limit requeues per request inside the queue.
            token_estimator: Sizes the answer budget of each batch.
            sleep: Coroutine used by the queue and the retry controller.
            clock: Monotonic clock for deadlines and call spacing.
            listener: Receives domain events.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1.")
        if max_item_length < 1:
            raise ValueError("max_item_length must be at least 1.")

        self.provider = provider
        self.store = store
        self.batch_size = batch_size
        self.max_item_length = max_item_length
        self.token_estimator = token_estimator
        self._cache = cache if cache is not None else TtlCache(cache_ttl_seconds)
        self._clock = clock
        self._listener = listener
        self._queue = RequestQueue(
            provider,
            min_interval,
            max_requeues=max_requeues,
            clock=clock,
            sleep=sleep,
            listener=listener,
        )
        self._retry = RetryController(retry_policy, clock=clock, sleep=sleep, listener=listener)
        self._active_topics: Optional[str] = None
        self._store_topics: Optional[str] = topic_fingerprint(store_topics) if store_topics else None
        self._closed = False
        logger.info(
            f"ClassificationService initialized with provider: {provider.provider_name} "
            f"(batch_size={batch_size}, max_item_length={max_item_length})"
        )

    @property
    def cache(self) -> TtlCache:
        return self._cache

    @property
    def queue(self) -> RequestQueue:
        return self._queue

    # --- Item & Topic Preparation ---

    def prepare_item(self, item: str) -> str:
        """Collapses whitespace and truncates to `max_item_length` characters."""
        text = _WHITESPACE.sub(" ", str(item or "")).strip()
        return text[: self.max_item_length].rstrip()

    def _activate_topics(self, topics: Sequence[str]) -> List[TopicLabel]:
        labels = [TopicLabel(str(t).strip()) for t in topics if str(t).strip()]
        if not labels:
            raise ValueError("At least one topic is required.")
        fingerprint = topic_fingerprint(labels)
        if self._active_topics is not None and fingerprint != self._active_topics:
            logger.info("Topic set changed; clearing cached decisions.")
            self._cache.clear()
        self._active_topics = fingerprint
        if self._store_topics is None:
            self._store_topics = fingerprint
        return labels

    def _store_matches_cache(self) -> bool:
        return self._active_topics is None or self._active_topics == self._store_topics

    # --- Classification ---

    async def classify_many(
        self,
        items: Sequence[str],
        topics: Sequence[str],
        *,
        timeout: Optional[float] = None,
    ) -> List[bool]:
        """Classifies items against topics, in input order.

        Cached decisions are reused; the remaining distinct items are sent in
        batches of `batch_size`. A batch that cannot be classified (retries
        exhausted, bad credentials, deadline) yields True for all its items
        and nothing is cached for it.

        Args:
            items: Texts to classify. Empty items are kept (True) without a call.
            topics: Topic labels.
            timeout: Overall budget in seconds for this call.

        Returns:
            One boolean per input item; True means relevant (keep visible).

        Raises:
            ValueError: If `topics` is empty.
        """
        topic_labels = self._activate_topics(topics)
        fingerprint = self._active_topics
        deadline = self._clock() + timeout if timeout is not None else None

        results: List[Optional[bool]] = [None] * len(items)
        slots: Dict[CacheKey, List[int]] = {}
        texts: Dict[CacheKey, str] = {}
        hits = 0

        for index, item in enumerate(items):
            text = self.prepare_item(item)
            if not text:
                results[index] = True
                continue
            key = normalize_key(text)
            cached = self._cache.get(key)
            if cached is not None:
                results[index] = cached
                hits += 1
                continue
            if key in slots:
                slots[key].append(index)
            else:
                slots[key] = [index]
                texts[key] = text

        if not slots:
            logger.debug(f"All {len(items)} items answered without a provider call ({hits} cache hits).")
            return [bool(r) for r in results]

        keys = list(slots)
        batches = [keys[i:i + self.batch_size] for i in range(0, len(keys), self.batch_size)]
        logger.info(f"Classifying {len(keys)} items in {len(batches)} batches ({hits} cache hits).")

        abort_reason: Optional[str] = None
        for batch_keys in batches:
            batch_items = [texts[k] for k in batch_keys]
            decisions: Optional[List[bool]] = None

            if abort_reason is None:
                try:
                    decisions = await self._classify_batch(batch_items, topic_labels, deadline)
                except (AuthError, DeadlineExceededError) as e:
                    abort_reason = f"{type(e).__name__}: {e}"
                    logger.error(f"Classification stopped; remaining items default to visible. {abort_reason}")
                except TopicFilterError as e:
                    logger.warning(f"Batch of {len(batch_items)} items defaulted to visible: {type(e).__name__}: {e}")
                    dispatch_event(self._listener, BatchDefaulted(batch_size=len(batch_items), reason=str(e)))

            if decisions is None:
                if abort_reason is not None:
                    dispatch_event(self._listener, BatchDefaulted(batch_size=len(batch_items), reason=abort_reason))
                decisions = [True] * len(batch_items)
            elif self._active_topics != fingerprint:
                # An overlapping call switched topics; the cache now serves another set
                logger.debug(f"Topic set changed during the call; not caching {len(batch_keys)} decisions.")
            else:
                for key, decision in zip(batch_keys, decisions):
                    self._cache.put(key, decision)

            for key, decision in zip(batch_keys, decisions):
                for index in slots[key]:
                    results[index] = decision

        return [bool(r) for r in results]

    async def classify(self, item: str, topics: Sequence[str], *, timeout: Optional[float] = None) -> bool:
        """Classifies a single item."""
        decisions = await self.classify_many([item], topics, timeout=timeout)
        return decisions[0]

    async def _classify_batch(
        self,
        items: List[str],
        topics: List[TopicLabel],
        deadline: Optional[float],
    ) -> List[bool]:
        request = build_prompt(topics, items, token_estimator=self.token_estimator)

        async def attempt() -> List[bool]:
            response = await self._queue.submit(request, deadline)
            return parse_response(response, items)

        return await self._retry.retry(attempt, deadline=deadline, description=f"batch of {len(items)}")

    # --- Persistence & Lifecycle ---

    def load_cache(self) -> int:
        """Hydrates the cache from the store. Returns the number of live entries."""
        if self.store is None:
            return 0
        if not self._store_matches_cache():
            logger.warning("Cache snapshot belongs to another topic set; not loading it.")
            return 0
        try:
            records = self.store.load()
        except (CacheStoreError, OSError) as e:
            logger.warning(f"Could not load cache snapshot: {e}")
            return 0
        self._cache.hydrate(records)
        self._cache.prune_expired()
        logger.info(f"Loaded {len(self._cache)} cached decisions.")
        return len(self._cache)

    def flush_cache(self) -> int:
        """Writes the live cache snapshot to the store. Returns the record count.

        Raises:
            CacheStoreError: If the store cannot be written.
        """
        if self.store is None:
            return 0
        if not self._store_matches_cache():
            logger.warning("Cached decisions are for another topic set than the store; not flushing.")
            return 0
        self._cache.prune_expired()
        records = [entry.to_dict() for entry in self._cache.drain()]
        self.store.save(records)
        logger.debug(f"Flushed {len(records)} cached decisions.")
        return len(records)

    async def aclose(self) -> None:
        """Flushes the cache and releases the queue, the provider and the store.

        A snapshot that cannot be written is logged; closing always completes.
        """
        if self._closed:
            return
        self._closed = True
        try:
            self.flush_cache()
        except (CacheStoreError, OSError) as e:
            logger.warning(f"Could not save cache snapshot: {e}")
        finally:
            await self._queue.aclose()
            await self.provider.aclose()
            if self.store is not None:
                self.store.close()
        logger.debug("ClassificationService closed.")

    async def __aenter__(self) -> "ClassificationService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
