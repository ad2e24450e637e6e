"""Factory for building the busy-interval provider from config."""

from __future__ import annotations

import logging

from ..config import CalendarConfig
from .base import CalendarProvider, NullCalendarProvider
from .google_calendar import GoogleCalendarProvider
from .multi_calendar import MultiCalendarProvider

logger = logging.getLogger(__name__)


def build_calendar_provider(config: CalendarConfig) -> CalendarProvider:
    """Build a CalendarProvider from config.

    - provider "none": NullCalendarProvider (bookings and meetings only)
    - no sources: a single GoogleCalendarProvider from the top-level paths
    - sources: one GoogleCalendarProvider per source, wrapped in a
      MultiCalendarProvider unless it is a single required source
    """
    if config.provider == "none":
        return NullCalendarProvider()

    if not config.sources:
        return GoogleCalendarProvider(config)

    required: list[CalendarProvider] = []
    optional: list[CalendarProvider] = []
    for src in config.sources:
        src_config = CalendarConfig(
            provider=config.provider,
            credentials_path=src.credentials_path,
            token_path=src.token_path,
            max_retries=config.max_retries,
            retry_base_delay=config.retry_base_delay,
        )
        provider = GoogleCalendarProvider(src_config, name=src.name)
        (required if src.required else optional).append(provider)

    if len(required) == 1 and not optional:
        logger.info("Single calendar source '%s' configured, using direct provider.", config.sources[0].name)
        return required[0]

    logger.info(
        "Multi-calendar: %d required, %d optional source(s)", len(required), len(optional),
    )
    return MultiCalendarProvider(required, optional)
