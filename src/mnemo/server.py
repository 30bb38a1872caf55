import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

from mnemo.application.card_service import CardService
from mnemo.application.config import AppConfig, resolve_config
from mnemo.application.factory import get_card_store
from mnemo.application.review_session import ReviewSessionController
from mnemo.consts import VERSION
from mnemo.domain.errors import InvalidQuality, MnemoError
from mnemo.domain.models import AnswerOutcome, CardKind, CardPayload, ReviewScope
from mnemo.domain.ports import CardStore, Clock
from mnemo.infrastructure.clock import SystemClock

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("mnemo.server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logging.getLogger("mnemo").setLevel(get_config().log_level)
    logger.info(f"mnemo server v{VERSION} starting up...")
    yield
    # Shutdown
    logger.info("mnemo server shutting down...")
    for store in _stores.values():
        await store.close()
    _stores.clear()


app = FastAPI(
    title="mnemo",
    description="Spaced-repetition review API.",
    version=VERSION,
    lifespan=lifespan,
)

start_time = time.time()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


@lru_cache
def get_config() -> AppConfig:
    return resolve_config()


_stores: dict[tuple[str, str], CardStore] = {}


def _store_for(database_url: str, store: str) -> CardStore:
    key = (database_url, store)
    if key not in _stores:
        config = resolve_config({"database_url": database_url, "store": store})
        _stores[key] = get_card_store(config)
    return _stores[key]


def get_store(config: AppConfig = Depends(get_config)) -> CardStore:
    return _store_for(config.database_url, config.store)


def get_clock() -> Clock:
    return SystemClock()


def get_controller(
    store: CardStore = Depends(get_store), clock: Clock = Depends(get_clock)
) -> ReviewSessionController:
    return ReviewSessionController(store, clock)


def get_card_service(
    store: CardStore = Depends(get_store), clock: Clock = Depends(get_clock)
) -> CardService:
    return CardService(store, clock)


def get_learner(x_learner_id: str | None = Header(default=None)) -> str:
    # Authentication happens upstream; we only need the learner's identity.
    if not x_learner_id:
        raise StarletteHTTPException(status_code=401, detail="Missing X-Learner-Id header")
    return x_learner_id


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@app.exception_handler(MnemoError)
async def mnemo_error_handler(request: Request, exc: MnemoError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
        return _error(exc.status_code, exc.public_message)
    return _error(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return _error(400, f"Invalid request: {exc.errors()[0].get('msg', 'bad input')}")


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
    return _error(500, "Unable to process your request. Please try again.")


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


class AnswerRequest(BaseModel):
    # Left untyped so a bad value maps to InvalidQuality instead of a schema error
    quality: Any = None


class CardOut(CamelModel):
    id: str
    front: str
    back: str
    kind: CardKind
    reversed: bool

    @classmethod
    def from_payload(cls, payload: CardPayload | None) -> "CardOut | None":
        if payload is None:
            return None
        return cls(
            id=payload.id,
            front=payload.front,
            back=payload.back,
            kind=payload.kind,
            reversed=payload.reversed,
        )


class ReviewedCardOut(CamelModel):
    interval: int
    ease_factor: float
    next_review_date: datetime


class AnswerResponse(CamelModel):
    success: bool = True
    has_next_card: bool
    next_card: CardOut | None
    remaining_count: int
    message: str | None
    reviewed_card: ReviewedCardOut

    @classmethod
    def from_outcome(cls, outcome: AnswerOutcome) -> "AnswerResponse":
        reviewed = outcome.reviewed_card
        return cls(
            has_next_card=outcome.has_next_card,
            next_card=CardOut.from_payload(outcome.next_card),
            remaining_count=outcome.remaining_count,
            message=outcome.message,
            reviewed_card=ReviewedCardOut(
                interval=reviewed.interval,
                ease_factor=reviewed.ease_factor,
                next_review_date=reviewed.next_review_date,
            ),
        )


class SessionResponse(CamelModel):
    success: bool = True
    card: CardOut | None
    total_due: int
    message: str | None


class DueCountResponse(CamelModel):
    success: bool = True
    due_count: int


class DeckIn(CamelModel):
    name: str
    description: str = ""


class DeckOut(CamelModel):
    id: str
    name: str
    description: str
    is_default: bool
    card_count: int = 0
    due_count: int = 0


class DeckListResponse(CamelModel):
    success: bool = True
    decks: list[DeckOut]


class CardIn(CamelModel):
    front: str
    back: str
    deck_id: str | None = None
    tags: str | list[str] | None = None
    example_sentences: list[str] = Field(default_factory=list)


class CreatedCardsResponse(CamelModel):
    success: bool = True
    cards: list[CardOut]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@app.get("/version")
async def get_version():
    return {"version": VERSION}


def _parse_quality(raw: Any, config: AppConfig) -> int:
    """Coerce the submitted rating and apply the UI-level allowed set.

    Accepts ints, integral floats such as 4.0, and numeric strings.
    """
    if isinstance(raw, bool):
        raise InvalidQuality(raw)
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    if isinstance(raw, str):
        try:
            raw = int(raw.strip())
        except ValueError:
            raise InvalidQuality(raw) from None
    if not isinstance(raw, int) or raw not in config.allowed_qualities:
        raise InvalidQuality(raw)
    return raw


async def _answer(
    card_id: str,
    req: AnswerRequest,
    scope: ReviewScope,
    controller: ReviewSessionController,
    config: AppConfig,
) -> AnswerResponse:
    quality = _parse_quality(req.quality, config)
    outcome = await controller.submit_answer(card_id, quality, scope)
    logger.debug(
        f"Card {card_id} answered q={quality}: interval={outcome.reviewed_card.interval} "
        f"remaining={outcome.remaining_count}"
    )
    return AnswerResponse.from_outcome(outcome)


@app.get("/cards/review", response_model=SessionResponse)
async def review(
    learner: str = Depends(get_learner),
    controller: ReviewSessionController = Depends(get_controller),
):
    """Open a review session over all of the learner's cards."""
    snapshot = await controller.start_session(ReviewScope(learner_id=learner))
    return SessionResponse(
        card=CardOut.from_payload(snapshot.card),
        total_due=snapshot.total_due,
        message=snapshot.message,
    )


@app.get("/cards/due-count", response_model=DueCountResponse)
async def due_count(
    deck_id: str | None = None,
    learner: str = Depends(get_learner),
    controller: ReviewSessionController = Depends(get_controller),
):
    count = await controller.count_due(ReviewScope(learner_id=learner, deck_id=deck_id))
    return DueCountResponse(due_count=count)


@app.post("/cards/{card_id}/answer", response_model=AnswerResponse)
async def answer(
    card_id: str,
    req: AnswerRequest,
    learner: str = Depends(get_learner),
    controller: ReviewSessionController = Depends(get_controller),
    config: AppConfig = Depends(get_config),
):
    """Submit an answer during a global review session."""
    return await _answer(card_id, req, ReviewScope(learner_id=learner), controller, config)


@app.post("/cards", response_model=CreatedCardsResponse, status_code=201)
async def create_cards(
    req: CardIn,
    learner: str = Depends(get_learner),
    service: CardService = Depends(get_card_service),
):
    """Create a word card plus one fill-in-the-blank card per example sentence."""
    cards = await service.create_cards(
        learner,
        req.front,
        req.back,
        deck_id=req.deck_id,
        tags=req.tags,
        example_sentences=req.example_sentences,
    )
    return CreatedCardsResponse(
        cards=[CardOut.from_payload(CardPayload.from_card(c)) for c in cards]
    )


@app.get("/decks", response_model=DeckListResponse)
async def list_decks(
    learner: str = Depends(get_learner),
    service: CardService = Depends(get_card_service),
):
    await service.ensure_default_deck(learner)
    summaries = await service.deck_overview(learner)
    return DeckListResponse(
        decks=[
            DeckOut(
                id=s.deck.id,
                name=s.deck.name,
                description=s.deck.description,
                is_default=s.deck.is_default,
                card_count=s.card_count,
                due_count=s.due_count,
            )
            for s in summaries
        ]
    )


@app.post("/decks", response_model=DeckOut, status_code=201)
async def create_deck(
    req: DeckIn,
    learner: str = Depends(get_learner),
    service: CardService = Depends(get_card_service),
):
    deck = await service.create_deck(learner, req.name, req.description)
    return DeckOut(
        id=deck.id, name=deck.name, description=deck.description, is_default=deck.is_default
    )


@app.get("/decks/{deck_id}/review", response_model=SessionResponse)
async def deck_review(
    deck_id: str,
    learner: str = Depends(get_learner),
    controller: ReviewSessionController = Depends(get_controller),
):
    """Open a review session over one deck."""
    snapshot = await controller.start_session(ReviewScope(learner_id=learner, deck_id=deck_id))
    return SessionResponse(
        card=CardOut.from_payload(snapshot.card),
        total_due=snapshot.total_due,
        message=snapshot.message,
    )


@app.post("/decks/{deck_id}/review/{card_id}/answer", response_model=AnswerResponse)
async def deck_answer(
    deck_id: str,
    card_id: str,
    req: AnswerRequest,
    learner: str = Depends(get_learner),
    controller: ReviewSessionController = Depends(get_controller),
    config: AppConfig = Depends(get_config),
):
    """Submit an answer during a deck review session."""
    scope = ReviewScope(learner_id=learner, deck_id=deck_id)
    return await _answer(card_id, req, scope, controller, config)
