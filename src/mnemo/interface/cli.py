"""mnemo CLI: root commands and subgroup registration."""

import asyncio
import json
import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated

import typer

from mnemo.application.config import AppConfig, resolve_config
from mnemo.application.factory import build_services, get_card_store
from mnemo.domain.constants import AGAIN, EASY, GOOD, HARD
from mnemo.domain.errors import MnemoError
from mnemo.domain.models import CardPayload, ReviewScope

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="mnemo: spaced-repetition flashcards with the SM-2 scheduler.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(help="Manage mnemo configuration.")
app.add_typer(config_app, name="config")

deck_app = typer.Typer(help="Create and list decks.", no_args_is_help=True)
app.add_typer(deck_app, name="deck")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

RATING_KEYS = {"a": AGAIN, "h": HARD, "g": GOOD, "e": EASY}


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    learner: Annotated[
        str | None, typer.Option("--learner", "-l", help="Learner id. Defaults to config.")
    ] = None,
    store: Annotated[str | None, typer.Option(help="Card store: memory or sql.")] = None,
    database_url: Annotated[str | None, typer.Option(help="SQLAlchemy database URL.")] = None,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 0,
):
    """Global settings for mnemo."""
    ctx.ensure_object(dict)
    ctx.obj["overrides"] = {
        "default_learner": learner,
        "store": store,
        "database_url": database_url,
    }
    if verbose:
        logging.getLogger("mnemo").setLevel(logging.DEBUG if verbose > 1 else logging.INFO)


def _config(ctx: typer.Context) -> AppConfig:
    obj = ctx.obj or {}
    return resolve_config(obj.get("overrides"))

@asynccontextmanager
async def _services(config: AppConfig):
    """Open the configured store for one command and close it afterwards."""
    store = get_card_store(config)
    try:
        yield build_services(store)
    finally:
        await store.close()


def _run(coro) -> None:
    """Run a coroutine, turning domain errors into a clean non-zero exit."""
    try:
        asyncio.run(coro)
    except MnemoError as e:
        typer.secho(f"Error: {e.message}", fg="red", err=True)
        raise typer.Exit(1) from None


# ---------------------------------------------------------------------------
# Root commands
# ---------------------------------------------------------------------------


@app.command()
def serve(
    ctx: typer.Context,
    host: Annotated[str | None, typer.Option(help="Bind address.")] = None,
    port: Annotated[int | None, typer.Option(help="Port to listen on.")] = None,
    reload: Annotated[bool, typer.Option("--reload", help="Reload on code changes.")] = False,
):
    """Start the HTTP review API."""
    import uvicorn

    config = _config(ctx)

    # The server process builds its own config; pass the global options down via env
    overrides = (ctx.obj or {}).get("overrides") or {}
    for key, value in overrides.items():
        if value is not None:
            os.environ[f"MNEMO_{key.upper()}"] = str(value)

    uvicorn.run(
        "mnemo.server:app",
        host=host or config.host,
        port=port or config.port,
        reload=reload,
    )


@app.command()
def add(
    ctx: typer.Context,
    front: Annotated[str, typer.Argument(help="Term to recall.")],
    back: Annotated[str, typer.Argument(help="Definition or translation.")],
    deck: Annotated[str | None, typer.Option(help="Deck id.")] = None,
    tags: Annotated[str | None, typer.Option(help="Comma-separated tags.")] = None,
    sentence: Annotated[
        list[str] | None,
        typer.Option("--sentence", "-s", help="Example sentence. Repeat for more."),
    ] = None,
):
    """Add a word card, plus a fill-in-the-blank card per example sentence."""
    config = _config(ctx)

    async def run():
        async with _services(config) as (_, cards):
            created = await cards.create_cards(
                config.default_learner,
                front,
                back,
                deck_id=deck,
                tags=tags,
                example_sentences=sentence or [],
            )
        n = len(created)
        typer.secho(f"{n} card{'s' if n > 1 else ''} created", fg="green")

    _run(run())


@app.command("import")
def import_cards(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="YAML file with a top-level 'cards' list.")],
    deck: Annotated[str | None, typer.Option(help="Deck id.")] = None,
):
    """Import cards from a YAML file."""
    config = _config(ctx)

    async def run():
        async with _services(config) as (_, cards):
            created = await cards.import_cards(config.default_learner, path, deck_id=deck)
        typer.secho(f"Imported {len(created)} cards from {path.name}", fg="green")

    _run(run())


@app.command()
def due(
    ctx: typer.Context,
    deck: Annotated[str | None, typer.Option(help="Limit to one deck id.")] = None,
):
    """Show how many cards are due now."""
    config = _config(ctx)

    async def run():
        async with _services(config) as (controller, _):
            count = await controller.count_due(ReviewScope(config.default_learner, deck))
        typer.echo(f"{count} card{'s' if count != 1 else ''} due for review")

    _run(run())


@app.command()
def review(
    ctx: typer.Context,
    deck: Annotated[str | None, typer.Option(help="Review only this deck id.")] = None,
):
    """Review due cards in the terminal.

    Each card shows its prompt side; press Enter to reveal the answer, then
    rate it: [a]gain, [h]ard, [g]ood, [e]asy, or [q]uit.
    """
    config = _config(ctx)
    scope = ReviewScope(config.default_learner, deck)

    async def run():
        async with _services(config) as (controller, _):
            await _review_loop(controller, scope)

    _run(run())


async def _review_loop(controller, scope: ReviewScope) -> None:
    snapshot = await controller.start_session(scope)
    card, remaining = snapshot.card, snapshot.total_due
    if card is None:
        typer.secho(snapshot.message, fg="green")
        return

    while card is not None:
        prompt, answer = _sides(card)
        typer.echo(f"\n[{remaining} due] {prompt}")
        typer.prompt("Press Enter to reveal", default="", show_default=False)
        typer.secho(answer, bold=True)

        key = typer.prompt("Rate [a/h/g/e/q]").strip().lower()
        while key not in RATING_KEYS and key != "q":
            key = typer.prompt("Rate [a/h/g/e/q]").strip().lower()
        if key == "q":
            typer.echo("Session paused.")
            return

        outcome = await controller.submit_answer(card.id, RATING_KEYS[key], scope)
        reviewed = outcome.reviewed_card
        typer.echo(
            f"Next review in {reviewed.interval} day{'s' if reviewed.interval != 1 else ''}"
            f" (ease {reviewed.ease_factor:.2f})"
        )
        card, remaining = outcome.next_card, outcome.remaining_count
        if outcome.message:
            typer.secho(outcome.message, fg="green")


def _sides(card: CardPayload) -> tuple[str, str]:
    """(shown side, answer side) honouring the card's presentation polarity."""
    if card.reversed:
        return card.back, card.front
    return card.front, card.back


# ---------------------------------------------------------------------------
# Deck subgroup
# ---------------------------------------------------------------------------


@deck_app.command("list")
def deck_list(
    ctx: typer.Context,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """List decks with card and due counts."""
    config = _config(ctx)

    async def run():
        async with _services(config) as (_, cards):
            await cards.ensure_default_deck(config.default_learner)
            summaries = await cards.deck_overview(config.default_learner)

        if json_output:
            typer.echo(
                json.dumps(
                    [
                        {
                            "id": s.deck.id,
                            "name": s.deck.name,
                            "default": s.deck.is_default,
                            "cards": s.card_count,
                            "due": s.due_count,
                        }
                        for s in summaries
                    ],
                    indent=2,
                )
            )
            return

        for s in summaries:
            marker = "*" if s.deck.is_default else " "
            typer.echo(
                f"{marker} {s.deck.name}  ({s.card_count} cards, {s.due_count} due)  {s.deck.id}"
            )

    _run(run())


@deck_app.command("create")
def deck_create(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Deck name.")],
    description: Annotated[str, typer.Option(help="Short description.")] = "",
):
    """Create a deck."""
    config = _config(ctx)

    async def run():
        async with _services(config) as (_, cards):
            deck = await cards.create_deck(config.default_learner, name, description)
        typer.secho(f'Deck "{deck.name}" created: {deck.id}', fg="green")

    _run(run())


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Display final resolved configuration."""
    config = _config(ctx)
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    typer.echo(json.dumps(d, indent=2))


def main():
    app()


if __name__ == "__main__":
    main()
