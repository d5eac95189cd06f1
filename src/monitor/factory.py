"""Wiring of the production monitor from settings."""

import structlog

from src.config.settings import Settings, get_settings
from src.delivery.channels import DiscordChannel
from src.delivery.notifier import Notifier
from src.ingestion.fetch_chain import FetchStrategyChain, create_default_strategies
from src.ingestion.http_client import HTTPClient
from src.monitor.config import MonitorConfig
from src.monitor.service import MonitorService
from src.resilience.backoff import RetryPolicy
from src.storage.database import Database
from src.storage.repository import DestinationRepository, HistoryRepository, SourceRepository

logger = structlog.get_logger(__name__)


def create_monitor_service(
    database: Database,
    http: HTTPClient,
    config: MonitorConfig | None = None,
    settings: Settings | None = None,
) -> MonitorService:
    """
    Build a MonitorService over PostgreSQL, the default fetch strategies
    and the Discord channel.

    Raises:
        ValueError: The Discord bot token is not configured.
    """
    settings = settings or get_settings()
    config = config or MonitorConfig()

    retry_policy = RetryPolicy(
        max_attempts=config.fetch_retry_attempts,
        base_delay=config.fetch_retry_base_delay,
        max_delay=config.fetch_retry_max_delay,
    )
    chain = FetchStrategyChain(
        create_default_strategies(http, settings, retry_policy),
        strategy_delay=config.strategy_delay_seconds,
    )
    channel = DiscordChannel(
        token=settings.discord_bot_token,
        api_url=settings.discord_api_url,
        timeout=settings.http_timeout_seconds,
    )
    notifier = Notifier(channel, web_url=settings.profile_web_url)

    logger.info(
        "Monitor wired",
        strategies=[s.name for s in chain.strategies],
        delivery=notifier.channel.name,
    )

    return MonitorService(
        sources=SourceRepository(database),
        destinations=DestinationRepository(database),
        history=HistoryRepository(database),
        fetcher=chain,
        delivery=notifier,
        config=config,
        recent_messages=notifier,
    )
