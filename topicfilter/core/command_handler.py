"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py) and delegates the work
to the ClassificationService and the cache store, reporting through the
console display.
"""

import logging
from typing import List, Optional, Sequence

from topicfilter.core.services.classification_service import ClassificationService
from topicfilter.domain.errors import CacheStoreError, TopicFilterError
from topicfilter.domain.interfaces.cache_store import CacheStore
from topicfilter.infrastructure.cli.display import ConsoleDisplay
from topicfilter.infrastructure.config.settings import ClassifierSettings

logger = logging.getLogger(__name__)


class CommandHandler:
    """Handles incoming commands and delegates to appropriate services."""

    def __init__(
        self,
        settings: ClassifierSettings,
        store: CacheStore,
        ui: ConsoleDisplay,
        classification_service: Optional[ClassificationService] = None,
    ):
        self.settings = settings
        self.store = store
        self.ui = ui
        self.classification_service = classification_service

    async def handle_classify(self, items: Sequence[str], timeout: Optional[float] = None) -> Optional[List[bool]]:
        """Handles the 'classify' command.

        Returns:
            The decisions, or None if the command could not run.
        """
        service = self.classification_service
        if service is None:
            self.ui.display_error("Classification service is not configured.")
            return None
        logger.info(f"Handling 'classify' command for {len(items)} items")
        try:
            # Loaded first so closing never writes an empty snapshot over the stored one
            service.load_cache()
            if not items:
                self.ui.display_error("Nothing to classify. Pass items as arguments or with --file.")
                return None
            decisions = await service.classify_many(items, self.settings.topics, timeout=timeout)
        except (TopicFilterError, ValueError) as e:
            logger.error(f"Classify command failed: {e}", exc_info=True)
            self.ui.display_error(f"Classification failed: {e}")
            return None
        finally:
            await service.aclose()

        self.ui.display_results(items, decisions, self.settings.topics)
        return decisions

    def handle_clear_cache(self, everything: bool = False) -> bool:
        """Handles the 'clear-cache' command. Returns False if the store could not be cleared."""
        logger.info(f"Handling 'clear-cache' command (everything={everything})")
        try:
            self.store.clear(everything=everything)
        except CacheStoreError as e:
            logger.error(f"Clear-cache command failed: {e}")
            self.ui.display_error(str(e))
            return False
        finally:
            self.store.close()
        scope = "all cached decisions" if everything else "cached decisions for the configured topics"
        self.ui.display_info(f"Cleared {scope}.")
        return True

    def handle_cache_info(self) -> int:
        """Handles the 'cache-info' command. Returns the number of stored records."""
        try:
            records = self.store.load()
        finally:
            self.store.close()
        if self.settings.cache_dir is None:
            self.ui.display_warning("Cache persistence is disabled; decisions last for one run only.")
            location = "memory"
        else:
            location = str(self.settings.cache_dir)
        self.ui.display_cache_info(records, self.settings.cache_ttl_seconds, location)
        return len(records)
