"""
Ports (interfaces) for card persistence and time.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from .models import Card, Deck


class Clock(ABC):
    """Source of the current instant. Always timezone-aware UTC."""

    @abstractmethod
    def now(self) -> datetime:
        pass


class CardStore(ABC):
    """
    Port for storing cards, decks, and scheduling state.

    Implementations:
        - InMemoryCardStore: Process-local dictionaries.
        - SqlCardStore: SQLAlchemy-backed database (SQLite by default).

    All lookups take the owner id; a card or deck owned by someone else is
    reported exactly like a missing one.
    """

    @abstractmethod
    async def get_card(self, card_id: str, owner_id: str) -> Card | None:
        pass

    @abstractmethod
    async def find_due(
        self,
        owner_id: str,
        now: datetime,
        deck_id: str | None = None,
        limit: int | None = None,
    ) -> list[Card]:
        """
        Fetch cards with next_review_date <= now.

        Returns:
            Cards sorted by next_review_date ascending, then insertion order.
        """
        pass

    @abstractmethod
    async def count_due(self, owner_id: str, now: datetime, deck_id: str | None = None) -> int:
        pass

    @abstractmethod
    async def save_scheduling(self, card: Card, expected_version: int) -> Card:
        """
        Atomically replace the card's scheduling state.

        Args:
            card: Card carrying the new scheduling state.
            expected_version: Version the caller read before computing the update.

        Returns:
            The stored card with its version bumped.

        Raises:
            StaleCardState: The stored version no longer matches.
            CardNotFound: The card disappeared in the meantime.
            PersistenceFailure: The backend failed; nothing was written.
        """
        pass

    @abstractmethod
    async def add_card(self, card: Card) -> Card:
        """Insert a new card. Returns it with seq and version assigned."""
        pass

    @abstractmethod
    async def add_cards(self, cards: list[Card]) -> list[Card]:
        """Insert several cards in one transaction: all of them or none."""
        pass

    @abstractmethod
    async def list_cards(self, owner_id: str, deck_id: str | None = None) -> list[Card]:
        pass

    @abstractmethod
    async def count_cards(self, owner_id: str, deck_id: str | None = None) -> int:
        pass

    @abstractmethod
    async def get_deck(self, deck_id: str, owner_id: str) -> Deck | None:
        pass

    @abstractmethod
    async def add_deck(self, deck: Deck) -> Deck:
        pass

    @abstractmethod
    async def list_decks(self, owner_id: str) -> list[Deck]:
        pass

    @abstractmethod
    async def get_default_deck(self, owner_id: str) -> Deck | None:
        pass

    async def close(self) -> None:
        """Release connections. Stores without any may leave this as is."""
        return None
