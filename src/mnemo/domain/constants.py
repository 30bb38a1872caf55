"""Centralized constants for mnemo.

All magic numbers and configuration defaults live here so every layer
imports from a single source of truth.
"""

# ---------- SM-2 ----------
DEFAULT_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3
DEFAULT_INTERVAL = 0
DEFAULT_REPETITIONS = 0
PASSING_QUALITY = 3
MIN_QUALITY = 0
MAX_QUALITY = 5
FIRST_INTERVAL = 1
SECOND_INTERVAL = 6
FAILURE_INTERVAL = 1

# ---------- Quality ratings sent by the review UI ----------
AGAIN = 0
HARD = 3
GOOD = 4
EASY = 5
UI_QUALITIES = (AGAIN, HARD, GOOD, EASY)

# ---------- Cards ----------
BLANK_MARKER = "_____"
SENTENCE_TAG = "sentence"
MAX_CARD_SIDE_LEN = 2000

# ---------- Decks ----------
DEFAULT_DECK_NAME = "General"
DEFAULT_DECK_DESCRIPTION = "Default deck for your cards"
MAX_DECK_NAME_LEN = 100
MAX_DECK_DESCRIPTION_LEN = 500

# ---------- Review session messages ----------
ALL_DONE_MESSAGE = "All done! No cards due for review."
ALL_DONE_DECK_MESSAGE = "All done! No cards due for review in this deck."
