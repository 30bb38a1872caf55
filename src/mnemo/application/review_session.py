"""
Review Session Controller: Application layer orchestrator.

Selects the next due card within a scope, applies answers through the
scheduler, and reports whether the session has more due work. Due status
is evaluated lazily on every call; no state is held between calls.
"""

from dataclasses import replace

from mnemo.application.scheduler import calculate_next_review, validate_quality
from mnemo.domain.constants import ALL_DONE_DECK_MESSAGE, ALL_DONE_MESSAGE
from mnemo.domain.errors import CardNotFound, ScopeNotFound
from mnemo.domain.models import (
    AnswerOutcome,
    Card,
    CardPayload,
    ReviewedCard,
    ReviewScope,
    SessionSnapshot,
)
from mnemo.domain.ports import CardStore, Clock


class ReviewSessionController:
    """
    Drives a review session for one learner, optionally limited to a deck.

    Follows Dependency Inversion: depends on the CardStore and Clock
    abstractions, not concrete adapter implementations.
    """

    def __init__(self, store: CardStore, clock: Clock):
        self._store = store
        self._clock = clock

    async def get_next_due_card(self, scope: ReviewScope) -> Card | None:
        """
        Return the due card with the earliest next_review_date, or None.

        Ties are broken by insertion order.
        """
        await self._authorize_scope(scope)
        return await self._next_due(scope)

    async def count_due(self, scope: ReviewScope) -> int:
        await self._authorize_scope(scope)
        return await self._store.count_due(scope.learner_id, self._clock.now(), scope.deck_id)

    async def start_session(self, scope: ReviewScope) -> SessionSnapshot:
        """Open a session: the first due card and the total due count."""
        await self._authorize_scope(scope)
        now = self._clock.now()
        due = await self._store.find_due(scope.learner_id, now, scope.deck_id, limit=1)
        total = await self._store.count_due(scope.learner_id, now, scope.deck_id)

        if not due:
            return SessionSnapshot(card=None, total_due=0, message=_done_message(scope))
        return SessionSnapshot(card=CardPayload.from_card(due[0]), total_due=total, message=None)

    async def submit_answer(
        self, card_id: str, quality: object, scope: ReviewScope
    ) -> AnswerOutcome:
        """
        Apply one answer to a card and report what comes next.

        Raises:
            InvalidQuality: quality is not an integer in [0, 5]. Nothing is read or written.
            ScopeNotFound: The scoped deck does not exist or belongs to someone else.
            CardNotFound: The card is missing, foreign, or outside the scoped deck.
            StaleCardState: A concurrent review of this card committed first.
            PersistenceFailure: The store failed to save; the next-card query is skipped.
        """
        quality = validate_quality(quality)
        await self._authorize_scope(scope)

        card = await self._store.get_card(card_id, scope.learner_id)
        if card is None or (scope.is_deck_scoped and card.deck_id != scope.deck_id):
            raise CardNotFound()

        reviewed_at = self._clock.now()
        updated = replace(
            card, scheduling=calculate_next_review(card.scheduling, quality, reviewed_at)
        )
        saved = await self._store.save_scheduling(updated, expected_version=card.version)

        now = self._clock.now()
        due = await self._store.find_due(scope.learner_id, now, scope.deck_id, limit=1)
        remaining = 0
        if due:
            remaining = await self._store.count_due(scope.learner_id, now, scope.deck_id)

        reviewed = ReviewedCard(
            interval=saved.scheduling.interval,
            ease_factor=saved.scheduling.ease_factor,
            next_review_date=saved.scheduling.next_review_date,
        )
        if not due:
            return AnswerOutcome(
                has_next_card=False,
                next_card=None,
                remaining_count=0,
                message=_done_message(scope),
                reviewed_card=reviewed,
            )
        return AnswerOutcome(
            has_next_card=True,
            next_card=CardPayload.from_card(due[0]),
            remaining_count=remaining,
            message=None,
            reviewed_card=reviewed,
        )

    async def _next_due(self, scope: ReviewScope) -> Card | None:
        due = await self._store.find_due(
            scope.learner_id, self._clock.now(), scope.deck_id, limit=1
        )
        return due[0] if due else None

    async def _authorize_scope(self, scope: ReviewScope) -> None:
        # Ownership check happens before the scheduler is ever invoked.
        if not scope.is_deck_scoped:
            return
        deck = await self._store.get_deck(scope.deck_id, scope.learner_id)
        if deck is None:
            raise ScopeNotFound()


def _done_message(scope: ReviewScope) -> str:
    return ALL_DONE_DECK_MESSAGE if scope.is_deck_scoped else ALL_DONE_MESSAGE
