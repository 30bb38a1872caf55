import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from mnemo.domain.errors import (
    CardNotFound,
    PersistenceFailure,
    StaleCardState,
    ValidationFailed,
)
from mnemo.domain.models import CardKind, CardSchedulingState
from mnemo.infrastructure.stores.sql_store import SqlCardStore


@pytest.mark.asyncio
async def test_add_card_assigns_sequence_and_version(store, make_card):
    first = await store.add_card(replace(make_card("c1"), version=7))
    second = await store.add_card(make_card("c2"))

    assert first.version == 0
    assert second.seq > first.seq


@pytest.mark.asyncio
async def test_round_trip_keeps_every_field(store, make_card):
    card = replace(
        make_card("c1", deck_id="d1", kind=CardKind.SENTENCE, ease_factor=1.9, interval=4),
        tags=["verbs", "sentence"],
    )
    await store.add_card(card)

    got = await store.get_card("c1", "alice")

    assert got.kind is CardKind.SENTENCE
    assert got.tags == ["verbs", "sentence"]
    assert got.deck_id == "d1"
    assert got.scheduling == card.scheduling
    assert got.created_at == card.created_at
    assert got.scheduling.next_review_date.tzinfo is not None


@pytest.mark.asyncio
async def test_get_card_is_owner_scoped(store, make_card):
    await store.add_card(make_card("c1", owner_id="bob"))

    assert await store.get_card("c1", "alice") is None
    assert await store.get_card("nope", "bob") is None
    assert (await store.get_card("c1", "bob")).id == "c1"


@pytest.mark.asyncio
async def test_returned_cards_are_detached(store, make_card):
    await store.add_card(make_card("c1"))

    got = await store.get_card("c1", "alice")
    got.tags.append("mutated")

    assert (await store.get_card("c1", "alice")).tags == []


@pytest.mark.asyncio
async def test_find_due_orders_and_limits(store, make_card, clock):
    t0 = clock.now()
    await store.add_card(make_card("late", due=t0))
    await store.add_card(make_card("early", due=t0 - timedelta(days=2)))
    await store.add_card(make_card("tie", due=t0))
    await store.add_card(make_card("future", due=t0 + timedelta(minutes=1)))

    due = await store.find_due("alice", t0)
    assert [c.id for c in due] == ["early", "late", "tie"]
    assert [c.id for c in await store.find_due("alice", t0, limit=1)] == ["early"]
    assert await store.count_due("alice", t0) == 3


@pytest.mark.asyncio
async def test_find_due_compares_instants_across_timezones(store, make_card):
    plus_two = timezone(timedelta(hours=2))
    await store.add_card(make_card("c1", due=datetime(2024, 1, 1, 13, 0, tzinfo=plus_two)))

    # 13:00+02:00 is 11:00 UTC
    now = datetime(2024, 1, 1, 11, 30, tzinfo=timezone.utc)
    assert [c.id for c in await store.find_due("alice", now)] == ["c1"]


@pytest.mark.asyncio
async def test_save_scheduling_bumps_version(store, make_card, clock):
    stored = await store.add_card(make_card("c1"))
    new_state = CardSchedulingState(
        next_review_date=clock.now() + timedelta(days=6),
        ease_factor=2.6,
        interval=6,
        repetitions=2,
    )

    saved = await store.save_scheduling(replace(stored, scheduling=new_state), 0)

    assert saved.version == 1
    assert saved.scheduling == new_state
    assert (await store.get_card("c1", "alice")).scheduling == new_state


@pytest.mark.asyncio
async def test_save_scheduling_only_touches_scheduling(store, make_card):
    stored = await store.add_card(make_card("c1"))

    await store.save_scheduling(replace(stored, front="changed"), 0)

    assert (await store.get_card("c1", "alice")).front == "front-c1"


@pytest.mark.asyncio
async def test_save_scheduling_rejects_stale_version(store, make_card):
    stored = await store.add_card(make_card("c1"))
    await store.save_scheduling(stored, 0)

    with pytest.raises(StaleCardState):
        await store.save_scheduling(stored, 0)
    assert (await store.get_card("c1", "alice")).version == 1


@pytest.mark.asyncio
async def test_save_scheduling_missing_card(store, make_card):
    await store.add_card(make_card("c1", owner_id="bob"))

    with pytest.raises(CardNotFound):
        await store.save_scheduling(make_card("ghost"), 0)
    with pytest.raises(CardNotFound):
        await store.save_scheduling(make_card("c1", owner_id="alice"), 0)


@pytest.mark.asyncio
async def test_list_and_count_cards(store, make_card):
    await store.add_card(make_card("c1", deck_id="d1"))
    await store.add_card(make_card("c2"))
    await store.add_card(make_card("c3", owner_id="bob"))

    assert [c.id for c in await store.list_cards("alice")] == ["c1", "c2"]
    assert [c.id for c in await store.list_cards("alice", "d1")] == ["c1"]
    assert await store.count_cards("alice") == 2
    assert await store.count_cards("bob", "d1") == 0


@pytest.mark.asyncio
async def test_decks(store, make_deck):
    await store.add_deck(make_deck("d1", name="Spanish"))
    await store.add_deck(make_deck("d0", name="General", is_default=True))
    await store.add_deck(make_deck("b1", owner_id="bob"))

    assert (await store.get_deck("d1", "alice")).name == "Spanish"
    assert await store.get_deck("b1", "alice") is None
    assert {d.id for d in await store.list_decks("alice")} == {"d0", "d1"}
    assert (await store.get_default_deck("alice")).id == "d0"
    assert await store.get_default_deck("bob") is None


@pytest.mark.asyncio
async def test_only_one_default_deck_per_learner(store, make_deck):
    await store.add_deck(make_deck("d0", is_default=True))

    with pytest.raises(ValidationFailed):
        await store.add_deck(make_deck("d1", is_default=True))
    await store.add_deck(make_deck("b0", owner_id="bob", is_default=True))


@pytest.mark.asyncio
async def test_add_cards_stores_all_in_order(store, make_card):
    stored = await store.add_cards([make_card("c1"), make_card("c2"), make_card("c3")])

    assert [c.id for c in stored] == ["c1", "c2", "c3"]
    assert stored[0].seq < stored[1].seq < stored[2].seq
    assert await store.count_cards("alice") == 3


@pytest.mark.asyncio
async def test_add_cards_is_all_or_nothing(store, make_card):
    await store.add_card(make_card("taken"))

    with pytest.raises(ValidationFailed):
        await store.add_cards([make_card("new"), make_card("taken")])

    assert await store.get_card("new", "alice") is None
    assert await store.count_cards("alice") == 1


# --- SQL specifics ---


@pytest.mark.asyncio
async def test_sql_store_persists_to_file(tmp_path, make_card):
    url = f"sqlite:///{tmp_path / 'nested/dir/cards.db'}"

    first = SqlCardStore(url)
    await first.add_card(make_card("c1"))
    await first.close()

    assert (tmp_path / "nested/dir/cards.db").exists()

    second = SqlCardStore(url)
    assert (await second.get_card("c1", "alice")).front == "front-c1"
    await second.close()


@pytest.mark.asyncio
async def test_sql_store_wraps_database_errors(make_card):
    store = SqlCardStore("sqlite:///:memory:")
    naive = make_card("c1", due=datetime(2024, 1, 1))

    with pytest.raises(PersistenceFailure):
        await store.add_card(naive)
    assert await store.count_cards("alice") == 0
    await store.close()


@pytest.mark.asyncio
async def test_sql_store_duplicate_deck_id(make_deck):
    store = SqlCardStore("sqlite:///:memory:")
    await store.add_deck(make_deck("d1"))

    with pytest.raises(ValidationFailed):
        await store.add_deck(make_deck("d1", name="again"))
    await store.close()


@pytest.mark.asyncio
async def test_sql_store_default_deck_is_enforced_by_the_database(tmp_path, make_deck):
    store = SqlCardStore(f"sqlite:///{tmp_path / 'cards.db'}")
    first, second = make_deck("d0", is_default=True), make_deck("d1", is_default=True)

    # Both inserts start before either commits
    results = await asyncio.gather(
        store.add_deck(first), store.add_deck(second), return_exceptions=True
    )

    assert sum(isinstance(r, ValidationFailed) for r in results) == 1
    assert [d.is_default for d in await store.list_decks("alice")] == [True]
    await store.close()


@pytest.mark.asyncio
async def test_sql_store_calls_run_concurrently(tmp_path, make_card, clock):
    store = SqlCardStore(f"sqlite:///{tmp_path / 'cards.db'}")
    await store.add_cards([make_card(f"c{i}") for i in range(5)])

    counts = await asyncio.gather(*(store.count_due("alice", clock.now()) for _ in range(10)))

    assert counts == [5] * 10
    await store.close()
