"""Application wiring."""

from __future__ import annotations

import logging

from tagloop.config import Settings, api_keys, models
from tagloop.keys import KeyPool
from tagloop.llm.base import LLMProvider
from tagloop.llm.openrouter import OpenRouterProvider
from tagloop.orchestrator import Orchestrator
from tagloop.platform_client import PlatformClient
from tagloop.tools.file_tool import CREATE_FILE
from tagloop.tools.registry import ToolRegistry
from tagloop.tools.time_tool import GET_CURRENT_TIME

LOGGER = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO))


def build_registry(platform: PlatformClient | None = None) -> ToolRegistry:
    """Registry with the built-in tools."""

    registry = ToolRegistry(platform)
    registry.register(GET_CURRENT_TIME)
    registry.register(CREATE_FILE)
    return registry


def create_orchestrator(
    settings: Settings,
    platform: PlatformClient,
    provider: LLMProvider | None = None,
    registry: ToolRegistry | None = None,
) -> Orchestrator:
    """Initialize the key pool, provider and tool registry and return an orchestrator."""

    key_pool = KeyPool(
        api_keys(settings),
        models(settings),
        minute_block_seconds=settings.rate_limit_minute_seconds,
        day_block_seconds=settings.rate_limit_day_seconds,
    )

    provider = provider or OpenRouterProvider(
        settings.provider_base_url,
        request_timeout_seconds=settings.request_timeout_seconds,
    )
    return Orchestrator(
        llm=provider,
        tool_registry=registry or build_registry(platform),
        platform=platform,
        key_pool=key_pool,
        max_tool_depth=settings.max_tool_depth,
        max_retries=settings.max_retries,
        retry_base_delay_seconds=settings.retry_base_delay_seconds,
    )
