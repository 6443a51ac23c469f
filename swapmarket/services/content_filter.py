import re
from typing import Iterable, Optional

from ..core.exceptions import PreconditionViolation

CONTENT_FILTER_ERROR = "This text contains inappropriate words. Please keep the conversation polite."

_FOLD = str.maketrans({
    "ı": "i", "İ": "i",
    "ğ": "g", "Ğ": "g",
    "ü": "u", "Ü": "u",
    "ş": "s", "Ş": "s",
    "ö": "o", "Ö": "o",
    "ç": "c", "Ç": "c",
})

# Separators people insert to slip words past the filter
_SEPARATORS = re.compile(r"[\s\-_.,!?*+=()\[\]{}/\\|~`@#$%^&]")


def normalize(text: str) -> str:
    return _SEPARATORS.sub("", text.translate(_FOLD).lower())


def contains_inappropriate_content(text: Optional[str], blocked_words: Iterable[str]) -> bool:
    if not text:
        return False
    normalized = normalize(text)
    return any(normalize(word) in normalized for word in blocked_words if normalize(word))


def ensure_clean(text: Optional[str], blocked_words: Iterable[str]) -> None:
    if contains_inappropriate_content(text, blocked_words):
        raise PreconditionViolation(CONTENT_FILTER_ERROR)
