"""
Domain models for cards, decks, and their scheduling state.

These are pure data structures with no I/O or external dependencies.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .constants import DEFAULT_EASE_FACTOR, DEFAULT_INTERVAL, DEFAULT_REPETITIONS


class CardKind(str, Enum):
    """
    How a card is presented during review.

    WORD: the back (definition/translation) is shown first and the front
        (term) is the answer to recall.
    SENTENCE: a fill-in-the-blank card; the front is shown first and the
        back (the missing word) is the answer.
    """

    WORD = "word"
    SENTENCE = "sentence"


@dataclass(frozen=True)
class CardSchedulingState:
    """
    SM-2 scheduling state carried by every card.

    Attributes:
        ease_factor: Interval growth multiplier. Never below 1.3.
        interval: Days until the next review. 0 means due immediately.
        repetitions: Consecutive successful reviews since the last failure.
        next_review_date: The card is due once this is <= now.
    """

    next_review_date: datetime
    ease_factor: float = DEFAULT_EASE_FACTOR
    interval: int = DEFAULT_INTERVAL
    repetitions: int = DEFAULT_REPETITIONS


@dataclass
class Card:
    """A flashcard owned by exactly one learner."""

    id: str
    owner_id: str
    front: str
    back: str
    scheduling: CardSchedulingState
    created_at: datetime
    kind: CardKind = CardKind.WORD
    deck_id: str | None = None
    tags: list[str] = field(default_factory=list)

    # Assigned by the store
    seq: int = 0  # Insertion order, used to break due-date ties
    version: int = 0  # Bumped on every scheduling save

    @property
    def reversed(self) -> bool:
        """True when the back side is shown first."""
        return self.kind is CardKind.WORD

    def is_due(self, now: datetime) -> bool:
        return self.scheduling.next_review_date <= now


@dataclass
class Deck:
    id: str
    owner_id: str
    name: str
    created_at: datetime
    description: str = ""
    is_default: bool = False


@dataclass(frozen=True)
class ReviewScope:
    """
    Which cards a review session draws from.

    A scope without a deck covers every card the learner owns.
    """

    learner_id: str
    deck_id: str | None = None

    @property
    def is_deck_scoped(self) -> bool:
        return self.deck_id is not None


@dataclass(frozen=True)
class CardPayload:
    """Minimal presentation fields for the next card to review."""

    id: str
    front: str
    back: str
    kind: CardKind
    reversed: bool

    @classmethod
    def from_card(cls, card: Card) -> "CardPayload":
        return cls(
            id=card.id,
            front=card.front,
            back=card.back,
            kind=card.kind,
            reversed=card.reversed,
        )


@dataclass(frozen=True)
class ReviewedCard:
    """Feedback on the card that was just answered."""

    interval: int
    ease_factor: float
    next_review_date: datetime


@dataclass(frozen=True)
class AnswerOutcome:
    """Result of submitting one answer in a review session."""

    has_next_card: bool
    next_card: CardPayload | None
    remaining_count: int
    message: str | None
    reviewed_card: ReviewedCard


@dataclass(frozen=True)
class SessionSnapshot:
    """State of a review session as it is opened."""

    card: CardPayload | None
    total_due: int
    message: str | None


@dataclass(frozen=True)
class DeckSummary:
    deck: Deck
    card_count: int
    due_count: int
