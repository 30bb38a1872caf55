# Domain Package
from .errors import (
    CardNotFound,
    InvalidQuality,
    MnemoError,
    PersistenceFailure,
    ScopeNotFound,
    StaleCardState,
    ValidationFailed,
)
from .models import Card, CardKind, CardSchedulingState, Deck, ReviewScope
from .ports import CardStore, Clock

__all__ = [
    "Card",
    "CardKind",
    "CardSchedulingState",
    "Deck",
    "ReviewScope",
    "CardStore",
    "Clock",
    "MnemoError",
    "InvalidQuality",
    "ValidationFailed",
    "CardNotFound",
    "ScopeNotFound",
    "StaleCardState",
    "PersistenceFailure",
]
