import re
from pathlib import Path
from typing import Any

import yaml  # type: ignore
import yaml.error

from mnemo.domain.constants import BLANK_MARKER
from mnemo.domain.errors import ValidationFailed

# ---------- Tags ----------


def parse_tags(tags: str | list[str] | None) -> list[str]:
    """Split a comma-separated tag string into trimmed, lowercase, non-empty tags."""
    if not tags:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    return [t.strip().lower() for t in tags if t and t.strip()]


# ---------- Sentence cards ----------


def make_sentence_front(sentence: str, word: str) -> str:
    """Blank out every occurrence of word in sentence, ignoring case.

    "The woodpecker pecked", "woodpecker" -> "The _____ pecked"
    """
    if not word:
        return sentence
    return re.sub(re.escape(word), BLANK_MARKER, sentence, flags=re.IGNORECASE)


# ---------- YAML card files ----------


def load_card_file(path: Path) -> list[dict[str, Any]]:
    """Read a YAML file with a top-level `cards:` list.

    Each entry needs `front` and `back`; `tags` (string or list) and
    `sentences` (list of example sentences) are optional.
    """
    raw = path.read_text(encoding="utf-8").lstrip("\ufeff")

    # Fix tabs (common user error)
    if "\t" in raw:
        raw = raw.replace("\t", "  ")

    try:
        data = yaml.safe_load(raw) or {}
    except yaml.error.YAMLError as e:
        raise ValidationFailed(f"{path.name}: invalid YAML: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("cards"), list):
        raise ValidationFailed(f"{path.name}: expected a top-level 'cards' list")

    entries: list[dict[str, Any]] = []
    for i, item in enumerate(data["cards"], start=1):
        if not isinstance(item, dict):
            raise ValidationFailed(f"{path.name}: card #{i} is not a mapping")
        if not item.get("front") or not item.get("back"):
            raise ValidationFailed(f"{path.name}: card #{i} needs both 'front' and 'back'")
        sentences = item.get("sentences") or []
        if isinstance(sentences, str):
            sentences = [sentences]
        entries.append(
            {
                "front": str(item["front"]),
                "back": str(item["back"]),
                "tags": item.get("tags") or "",
                "sentences": [str(s) for s in sentences],
            }
        )
    return entries
