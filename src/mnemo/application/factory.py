"""
Store Factory
Centralizes the logic for selecting the card store adapter and wiring services.
"""

import logging

from mnemo.application.card_service import CardService
from mnemo.application.config import AppConfig
from mnemo.application.review_session import ReviewSessionController
from mnemo.domain.ports import CardStore, Clock
from mnemo.infrastructure.clock import SystemClock
from mnemo.infrastructure.stores.memory_store import InMemoryCardStore
from mnemo.infrastructure.stores.sql_store import SqlCardStore

logger = logging.getLogger(__name__)


def get_card_store(config: AppConfig) -> CardStore:
    """
    Returns the CardStore implementation selected by config.
    """
    if config.store == "memory":
        logger.debug("Store: in-memory")
        return InMemoryCardStore()

    logger.debug(f"Store: {config.database_url}")
    return SqlCardStore(config.database_url)


def build_services(
    store: CardStore, clock: Clock | None = None
) -> tuple[ReviewSessionController, CardService]:
    clock = clock or SystemClock()
    return ReviewSessionController(store, clock), CardService(store, clock)
