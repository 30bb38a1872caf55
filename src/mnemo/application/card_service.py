"""
Card Service: creating cards and decks and summarizing decks.

Cards are always created with the default scheduling state (due
immediately). Word cards get one companion fill-in-the-blank card per
example sentence.
"""

import logging
from collections.abc import Iterable
from pathlib import Path

from ulid import ULID

from mnemo.application.scheduler import new_scheduling_state
from mnemo.application.utils.text import load_card_file, make_sentence_front, parse_tags
from mnemo.domain.constants import (
    DEFAULT_DECK_DESCRIPTION,
    DEFAULT_DECK_NAME,
    MAX_CARD_SIDE_LEN,
    MAX_DECK_DESCRIPTION_LEN,
    MAX_DECK_NAME_LEN,
    SENTENCE_TAG,
)
from mnemo.domain.errors import ScopeNotFound, ValidationFailed
from mnemo.domain.models import Card, CardKind, Deck, DeckSummary
from mnemo.domain.ports import CardStore, Clock

logger = logging.getLogger(__name__)


def generate_id() -> str:
    """Generate a time-ordered id using ULID."""
    return str(ULID())


class CardService:
    def __init__(self, store: CardStore, clock: Clock):
        self._store = store
        self._clock = clock

    async def create_cards(
        self,
        owner_id: str,
        front: str,
        back: str,
        deck_id: str | None = None,
        tags: str | list[str] | None = None,
        example_sentences: Iterable[str] = (),
    ) -> list[Card]:
        """
        Create a word card plus one sentence card per non-empty example sentence.

        Every card is validated before any is stored; either all are saved or none.

        Returns:
            The stored cards, word card first.
        """
        cards = self._build_cards(owner_id, front, back, deck_id, tags, example_sentences)
        await self._check_deck(owner_id, deck_id)
        stored = await self._store.add_cards(cards)

        logger.info(f"Created {len(stored)} card(s) for learner {owner_id}")
        return stored

    async def import_cards(
        self, owner_id: str, path: Path, deck_id: str | None = None
    ) -> list[Card]:
        """Create cards from a YAML card file. See load_card_file for the format.

        A bad entry anywhere in the file aborts the whole import.
        """
        cards: list[Card] = []
        for i, entry in enumerate(load_card_file(path), start=1):
            try:
                cards.extend(
                    self._build_cards(
                        owner_id,
                        entry["front"],
                        entry["back"],
                        deck_id,
                        entry["tags"],
                        entry["sentences"],
                    )
                )
            except ValidationFailed as e:
                raise ValidationFailed(f"{path.name}: card #{i}: {e.message}") from e
        await self._check_deck(owner_id, deck_id)
        stored = await self._store.add_cards(cards)

        logger.info(f"Imported {len(stored)} card(s) from {path}")
        return stored

    async def create_deck(
        self, owner_id: str, name: str, description: str = "", is_default: bool = False
    ) -> Deck:
        name = (name or "").strip()
        description = (description or "").strip()
        if not name:
            raise ValidationFailed("Deck name is required")
        if len(name) > MAX_DECK_NAME_LEN:
            raise ValidationFailed(f"Deck name cannot exceed {MAX_DECK_NAME_LEN} characters")
        if len(description) > MAX_DECK_DESCRIPTION_LEN:
            raise ValidationFailed(
                f"Description cannot exceed {MAX_DECK_DESCRIPTION_LEN} characters"
            )

        deck = Deck(
            id=generate_id(),
            owner_id=owner_id,
            name=name,
            description=description,
            is_default=is_default,
            created_at=self._clock.now(),
        )
        return await self._store.add_deck(deck)

    async def ensure_default_deck(self, owner_id: str) -> Deck:
        """Return the learner's default deck, creating it if missing."""
        deck = await self._store.get_default_deck(owner_id)
        if deck is not None:
            return deck
        try:
            deck = await self.create_deck(
                owner_id, DEFAULT_DECK_NAME, DEFAULT_DECK_DESCRIPTION, is_default=True
            )
        except ValidationFailed:
            # Lost a race with another request creating the same default deck
            existing = await self._store.get_default_deck(owner_id)
            if existing is None:
                raise
            return existing
        logger.info(f"Created default deck for learner {owner_id}")
        return deck

    async def deck_overview(self, owner_id: str) -> list[DeckSummary]:
        """Card and due counts per deck; default deck first, then by name."""
        now = self._clock.now()
        decks = await self._store.list_decks(owner_id)
        decks.sort(key=lambda d: (not d.is_default, d.name))

        summaries = []
        for deck in decks:
            summaries.append(
                DeckSummary(
                    deck=deck,
                    card_count=await self._store.count_cards(owner_id, deck.id),
                    due_count=await self._store.count_due(owner_id, now, deck.id),
                )
            )
        return summaries

    async def _check_deck(self, owner_id: str, deck_id: str | None) -> None:
        if deck_id is not None and await self._store.get_deck(deck_id, owner_id) is None:
            raise ScopeNotFound()

    def _build_cards(
        self,
        owner_id: str,
        front: str,
        back: str,
        deck_id: str | None,
        tags: str | list[str] | None,
        example_sentences: Iterable[str],
    ) -> list[Card]:
        front = _validate_side("Front side", front)
        back = _validate_side("Back side", back)
        parsed_tags = parse_tags(tags)

        cards = [self._new_card(owner_id, front, back, CardKind.WORD, deck_id, parsed_tags)]
        for sentence in example_sentences:
            if not sentence or not sentence.strip():
                continue
            sentence_front = _validate_side(
                "Sentence", make_sentence_front(sentence.strip(), front)
            )
            cards.append(
                self._new_card(
                    owner_id,
                    sentence_front,
                    front,
                    CardKind.SENTENCE,
                    deck_id,
                    [*parsed_tags, SENTENCE_TAG],
                )
            )
        return cards

    def _new_card(
        self,
        owner_id: str,
        front: str,
        back: str,
        kind: CardKind,
        deck_id: str | None,
        tags: list[str],
    ) -> Card:
        now = self._clock.now()
        return Card(
            id=generate_id(),
            owner_id=owner_id,
            front=front,
            back=back,
            kind=kind,
            deck_id=deck_id,
            tags=list(tags),
            scheduling=new_scheduling_state(now),
            created_at=now,
        )


def _validate_side(label: str, text: str) -> str:
    text = (text or "").strip()
    if not text:
        raise ValidationFailed(f"{label} is required")
    if len(text) > MAX_CARD_SIDE_LEN:
        raise ValidationFailed(f"{label} cannot exceed {MAX_CARD_SIDE_LEN} characters")
    return text
