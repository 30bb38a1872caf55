"""
In-Memory Card Store: Infrastructure adapter backed by dictionaries.

Cards are copied on the way in and out so callers never share mutable
state with the store. A single asyncio lock serializes writes, which makes
the version check in save_scheduling atomic.
"""

import asyncio
import copy
from dataclasses import replace
from datetime import datetime

from mnemo.domain.errors import CardNotFound, StaleCardState, ValidationFailed
from mnemo.domain.models import Card, Deck
from mnemo.domain.ports import CardStore


class InMemoryCardStore(CardStore):
    def __init__(self):
        self._cards: dict[str, Card] = {}
        self._decks: dict[str, Deck] = {}
        self._next_seq = 1
        self._lock = asyncio.Lock()

    async def get_card(self, card_id: str, owner_id: str) -> Card | None:
        card = self._cards.get(card_id)
        if card is None or card.owner_id != owner_id:
            return None
        return copy.deepcopy(card)

    async def find_due(
        self,
        owner_id: str,
        now: datetime,
        deck_id: str | None = None,
        limit: int | None = None,
    ) -> list[Card]:
        due = [c for c in self._scoped(owner_id, deck_id) if c.is_due(now)]
        due.sort(key=lambda c: (c.scheduling.next_review_date, c.seq))
        if limit is not None:
            due = due[:limit]
        return [copy.deepcopy(c) for c in due]

    async def count_due(self, owner_id: str, now: datetime, deck_id: str | None = None) -> int:
        return sum(1 for c in self._scoped(owner_id, deck_id) if c.is_due(now))

    async def save_scheduling(self, card: Card, expected_version: int) -> Card:
        async with self._lock:
            stored = self._cards.get(card.id)
            if stored is None or stored.owner_id != card.owner_id:
                raise CardNotFound()
            if stored.version != expected_version:
                raise StaleCardState()
            # Only the scheduling state changes on review
            updated = replace(stored, scheduling=card.scheduling, version=stored.version + 1)
            self._cards[card.id] = updated
            return copy.deepcopy(updated)

    async def add_card(self, card: Card) -> Card:
        [stored] = await self.add_cards([card])
        return stored

    async def add_cards(self, cards: list[Card]) -> list[Card]:
        async with self._lock:
            if any(c.id in self._cards for c in cards) or len({c.id for c in cards}) != len(cards):
                raise ValidationFailed("Card id already exists")
            stored = []
            for card in cards:
                new = replace(copy.deepcopy(card), seq=self._next_seq, version=0)
                self._next_seq += 1
                self._cards[new.id] = new
                stored.append(copy.deepcopy(new))
            return stored

    async def list_cards(self, owner_id: str, deck_id: str | None = None) -> list[Card]:
        cards = sorted(self._scoped(owner_id, deck_id), key=lambda c: c.seq)
        return [copy.deepcopy(c) for c in cards]

    async def count_cards(self, owner_id: str, deck_id: str | None = None) -> int:
        return sum(1 for _ in self._scoped(owner_id, deck_id))

    async def get_deck(self, deck_id: str, owner_id: str) -> Deck | None:
        deck = self._decks.get(deck_id)
        if deck is None or deck.owner_id != owner_id:
            return None
        return copy.deepcopy(deck)

    async def add_deck(self, deck: Deck) -> Deck:
        async with self._lock:
            if deck.is_default and self._default_deck(deck.owner_id) is not None:
                raise ValidationFailed(f"Learner {deck.owner_id} already has a default deck")
            self._decks[deck.id] = copy.deepcopy(deck)
            return copy.deepcopy(deck)

    async def list_decks(self, owner_id: str) -> list[Deck]:
        return [copy.deepcopy(d) for d in self._decks.values() if d.owner_id == owner_id]

    async def get_default_deck(self, owner_id: str) -> Deck | None:
        deck = self._default_deck(owner_id)
        return copy.deepcopy(deck) if deck else None

    def _scoped(self, owner_id: str, deck_id: str | None):
        for card in self._cards.values():
            if card.owner_id != owner_id:
                continue
            if deck_id is not None and card.deck_id != deck_id:
                continue
            yield card

    def _default_deck(self, owner_id: str) -> Deck | None:
        for deck in self._decks.values():
            if deck.owner_id == owner_id and deck.is_default:
                return deck
        return None
