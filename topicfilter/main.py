"""Main entry point for the topicfilter application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Coroutine, Dict, List, Optional

import typer
from typing_extensions import Annotated

from topicfilter.core.command_handler import CommandHandler
from topicfilter.core.services.classification_service import ClassificationService
from topicfilter.domain.errors import ConfigError
from topicfilter.domain.interfaces.cache_store import CacheStore
from topicfilter.domain.models.topics import topic_fingerprint
from topicfilter.infrastructure.ai.factory import create_provider
from topicfilter.infrastructure.cache.stores import DiskCacheStore, MemoryCacheStore
from topicfilter.infrastructure.cache.ttl_cache import TtlCache
from topicfilter.infrastructure.cli.display import ConsoleDisplay
from topicfilter.infrastructure.config.settings import (
    DEFAULT_CONFIG_FILE,
    ClassifierSettings,
    build_settings,
    get_config,
    load_configuration,
)
from topicfilter.infrastructure.monitoring.logger_setup import DEFAULT_LOG_FORMAT, setup_logging
from topicfilter.infrastructure.optimization.token_estimator import TokenEstimator
from topicfilter.infrastructure.resilience.api_retry import RetryPolicy

logger = logging.getLogger(__name__)


def create_store(settings: ClassifierSettings) -> CacheStore:
    """One snapshot per topic set: decisions only hold for the topics that produced them."""
    if settings.cache_dir is None:
        return MemoryCacheStore()
    record_name = f"{settings.cache_record_name}-{topic_fingerprint(settings.topics)}"
    return DiskCacheStore(settings.cache_dir, record_name)


def create_dependencies(
    config_file: Path = DEFAULT_CONFIG_FILE,
    provider: Optional[str] = None,
    topics: Optional[List[str]] = None,
    with_service: bool = True,
) -> Dict[str, Any]:
    """Creates and wires up all dependencies for one command.

    This acts as the Composition Root.

    Raises:
        ConfigError: If configuration is invalid or provider credentials are missing.
    """
    load_configuration(config_file)
    setup_logging(
        log_level=get_config("logging.level", "INFO"),
        log_format=get_config("logging.format", DEFAULT_LOG_FORMAT),
        log_file=get_config("logging.file"),
    )
    logger.info("Initializing application dependencies...")

    dependencies: Dict[str, Any] = {}
    dependencies["ui"] = ConsoleDisplay()
    settings = build_settings(provider=provider, topics=topics)
    dependencies["settings"] = settings
    dependencies["store"] = create_store(settings)

    service = None
    if with_service:
        service = ClassificationService(
            create_provider(settings),
            cache=TtlCache(settings.cache_ttl_seconds),
            store=dependencies["store"],
            store_topics=settings.topics,
            batch_size=settings.batch_size,
            max_item_length=settings.max_item_length,
            retry_policy=RetryPolicy(
                max_attempts=settings.max_attempts,
                initial_delay=settings.initial_delay,
                backoff_factor=settings.backoff_factor,
                timeout=settings.attempt_timeout_seconds,
                error_delay=settings.error_delay,
            ),
            min_interval=settings.min_interval_seconds,
            max_requeues=settings.max_requeues,
            token_estimator=TokenEstimator(),
        )
    dependencies["classification_service"] = service

    dependencies["command_handler"] = CommandHandler(
        settings=settings,
        store=dependencies["store"],
        ui=dependencies["ui"],
        classification_service=service,
    )
    logger.info("All dependencies initialized successfully.")
    return dependencies


app = typer.Typer(
    name="topicfilter",
    help="topicfilter: classify short texts against a topic set with a rate-limited LLM.",
    add_completion=False,
)


def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Runs an async handler from a sync Typer command."""
    return asyncio.run(coro)


def build_handler(
    config_file: Path,
    provider: Optional[str] = None,
    topics: Optional[List[str]] = None,
    with_service: bool = True,
) -> CommandHandler:
    try:
        dependencies = create_dependencies(config_file, provider, topics, with_service)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        ConsoleDisplay().display_error(f"Configuration error: {e}")
        raise typer.Exit(code=1)
    return dependencies["command_handler"]


def read_items_file(path: Path) -> List[str]:
    """One item per non-blank line."""
    with open(path, "r", encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip()]


ConfigOption = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to the YAML configuration file."),
]

ProviderOption = Annotated[
    Optional[str],
    typer.Option("--provider", "-p", help="Provider to use ('azure' or 'ark'). Uses config if not set."),
]


@app.command()
def classify(
    items: Annotated[Optional[List[str]], typer.Argument(help="Items (e.g. video titles) to classify.")] = None,
    topic: Annotated[
        Optional[List[str]],
        typer.Option("--topic", "-t", help="Topic id or label; repeat for several. Overrides config."),
    ] = None,
    file: Annotated[
        Optional[Path],
        typer.Option("--file", "-f", exists=True, file_okay=True, dir_okay=False, readable=True,
                     help="Read additional items from a file, one per line."),
    ] = None,
    provider: ProviderOption = None,
    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", min=0.0, help="Overall time budget in seconds."),
    ] = None,
    config: ConfigOption = DEFAULT_CONFIG_FILE,
):
    """Classify items and show which ones are kept."""
    all_items = list(items or [])
    if file is not None:
        all_items.extend(read_items_file(file))
    handler = build_handler(config, provider, topic)
    decisions = run_async(handler.handle_classify(all_items, timeout=timeout))
    if decisions is None:
        raise typer.Exit(code=1)


@app.command(name="clear-cache")
def clear_cache_command(
    everything: Annotated[
        bool,
        typer.Option("--all", help="Remove cached decisions for every topic set."),
    ] = False,
    config: ConfigOption = DEFAULT_CONFIG_FILE,
):
    """Clears the persisted classification cache."""
    handler = build_handler(config, with_service=False)
    if not handler.handle_clear_cache(everything):
        raise typer.Exit(code=1)


@app.command(name="cache-info")
def cache_info_command(config: ConfigOption = DEFAULT_CONFIG_FILE):
    """Shows what the persisted cache holds for the configured topics."""
    handler = build_handler(config, with_service=False)
    handler.handle_cache_info()


def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()
