# Phrase and username checks for the submission form.
# Every word slot is judged on its own: trim, lowercase, compare with the answer
# word at the same position. Nothing here raises for odd input; an empty or
# wrong field is a displayable state, not a failure.

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Sequence
import re
from .models import UsernameState, WordState

SECRET_PHRASE = (
    "steel", "hamster", "casual", "nose", "raise", "right",
    "various", "cherry", "trick", "purse", "bag", "session",
)

NUM_WORDS = 12

# Same cap as the input boxes' maxlength.
WORD_MAX_LENGTH = 20

USERNAME_PATTERN = re.compile(r"[A-Za-z0-9._-]{2,32}(#[0-9]{4})?")

if len(SECRET_PHRASE) != NUM_WORDS:
    raise RuntimeError("Secret phrase must have exactly 12 words.")

USERNAME_REQUIRED = "Discord username is required"
USERNAME_INVALID = "Invalid Discord username format (should be: username#1234)"
USERNAME_INVALID_HINT = "Invalid format. Use: username or username#1234"


def normalize_word(text: str) -> str:
    return text.strip().lower()


def classify_word(text: str, index: int) -> WordState:
    if not 0 <= index < NUM_WORDS:
        raise IndexError(f"word index {index} out of range")
    value = normalize_word(text)
    if value == "":
        return "empty"
    if value == SECRET_PHRASE[index]:
        return "correct"
    return "incorrect"


def is_valid_username(username: str) -> bool:
    return USERNAME_PATTERN.fullmatch(username) is not None


def username_state(username: str) -> UsernameState:
    value = username.strip()
    if not value:
        return "empty"
    return "valid" if is_valid_username(value) else "invalid"


def username_error(username: str, on_blur: bool = False) -> Optional[str]:
    """
    Message for the username field, or None when there is nothing to say.

    On blur an empty field is left alone (the user may not have reached it yet);
    at submit time it is required.
    """
    state = username_state(username)
    if state == "valid":
        return None
    if state == "empty":
        return None if on_blur else USERNAME_REQUIRED
    return USERNAME_INVALID_HINT if on_blur else USERNAME_INVALID


def join_phrase(words: Sequence[str]) -> str:
    return " ".join(normalize_word(w) for w in words)


@dataclass
class PhraseCheck:
    is_valid: bool
    error_count: int
    username: str
    username_error: Optional[str]
    message: Optional[str]


def check_phrase(words: Sequence[str], username: str) -> PhraseCheck:
    if len(words) != NUM_WORDS:
        raise ValueError(f"expected {NUM_WORDS} words, got {len(words)}")

    name = username.strip()
    name_error = username_error(name)

    error_count = 0
    for i, w in enumerate(words):
        if normalize_word(w) != SECRET_PHRASE[i]:
            error_count += 1

    is_valid = name_error is None and error_count == 0
    message = None
    if not is_valid:
        if name_error is None:
            message = f"{error_count} word(s) incorrect. Please check and try again."
        else:
            message = "Please enter a Discord username and correct phrase."

    return PhraseCheck(
        is_valid=is_valid,
        error_count=error_count,
        username=name,
        username_error=name_error,
        message=message,
    )


def phrase_preview(phrase: str, words: int = 3) -> str:
    return " ".join(phrase.split(" ")[:words]) + "..."
