# Submission form controller.
#
# One object per visitor holds every piece of mutable form state: the 12 word
# slots, the username, the status message, the submit control and the theme
# flag. Submission workflow:
#   idle -> validating -> rejected -> idle       (no store call)
#   idle -> validating -> accepted -> idle       (one store write, then reset)
# While the submit control is disabled no second write can start. There is no
# idempotency key, so a client driving the store directly can still duplicate.

from __future__ import annotations
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, MutableMapping, Optional, Set
from .config import REFRESH_DELAY, RESET_DELAY, STORE_TIMEOUT
from .errors import LocalValidationError, PhraseGateError, RemoteWriteError
from .leaderboard import LeaderboardRefresher
from .models import (
    FormState, MessageKind, SubmissionRecord, UsernameState, WordField, WordState, WorkflowState,
    utc_now_iso,
)
from .phrase import (
    NUM_WORDS, WORD_MAX_LENGTH, check_phrase, classify_word, join_phrase, username_error, username_state,
)
from .store import Store, call_with_timeout

logger = logging.getLogger(__name__)

THEME_KEY = "darkMode"
SUCCESS_MESSAGE = "✅ Phrase verified successfully!"


@dataclass
class SubmitResult:
    accepted: bool
    error_count: int = 0
    busy: bool = False
    error: Optional[str] = None


class FormController:
    def __init__(self, store: Store, refresher: LeaderboardRefresher,
                 prefs: Optional[MutableMapping[str, str]] = None, identity: Optional[str] = None,
                 reset_delay: float = RESET_DELAY, refresh_delay: float = REFRESH_DELAY,
                 timeout: Optional[float] = STORE_TIMEOUT):
        self.store = store
        self.refresher = refresher
        self.identity = identity
        self.reset_delay = reset_delay
        self.refresh_delay = refresh_delay
        self.timeout = timeout

        self.words: List[str] = [""] * NUM_WORDS
        self.word_states: List[WordState] = ["empty"] * NUM_WORDS
        self.username = ""
        self.username_error: Optional[str] = None
        self.message: Optional[str] = None
        self.message_kind: Optional[MessageKind] = None
        self.submit_enabled = True
        self.workflow: WorkflowState = "idle"

        self.prefs = prefs if prefs is not None else {}
        self.dark_mode = self.prefs.get(THEME_KEY) == "true"

        self.last_active = time.time()
        self._timers: Set[asyncio.Task] = set()

    def _touch(self) -> None:
        self.last_active = time.time()

    def _show(self, message: Optional[str], kind: Optional[MessageKind]) -> None:
        self.message = message
        self.message_kind = kind if message else None

    def set_word(self, index: int, text: str) -> WordState:
        self._touch()
        text = text[:WORD_MAX_LENGTH]
        state = classify_word(text, index)
        self.words[index] = text
        self.word_states[index] = state
        self._show(None, None)
        return state

    def set_username(self, text: str) -> None:
        self._touch()
        self.username = text

    def blur_username(self, text: Optional[str] = None) -> UsernameState:
        """Non-blocking check when the username field loses focus."""
        if text is not None:
            self.set_username(text)
        self.username_error = username_error(self.username, on_blur=True)
        return username_state(self.username)

    def _validate(self):
        check = check_phrase(self.words, self.username)
        self.username_error = check.username_error
        if not check.is_valid:
            raise LocalValidationError(check.message, error_count=check.error_count)
        return check

    async def submit(self, identity: Optional[str] = None) -> SubmitResult:
        """Run one submission; ``identity`` is who the store's write policy charges."""
        self._touch()
        if not self.submit_enabled:
            logger.debug("Submit ignored while a submission is in flight")
            return SubmitResult(accepted=False, busy=True)

        self.workflow = "validating"
        try:
            check = self._validate()
        except LocalValidationError as e:
            self.workflow = "rejected"
            self._show(e.user_message, "error")
            self.workflow = "idle"
            return SubmitResult(accepted=False, error_count=e.error_count)

        self.workflow = "accepted"
        self.submit_enabled = False
        self._show(SUCCESS_MESSAGE, "success")

        record = SubmissionRecord(
            username=check.username,
            phrase=join_phrase(self.words),
            timestamp=utc_now_iso(),
            verified=True,
        )
        try:
            await call_with_timeout(self.store.add(record, identity or self.identity), self.timeout, RemoteWriteError)
        except PhraseGateError as e:
            logger.error("Error submitting phrase for %s: %s", record.username, e)
            self._show(f"Error: {e.user_message or 'Unknown error'}", "error")
            self.submit_enabled = True
            self.workflow = "idle"
            return SubmitResult(accepted=False, error=e.user_message)

        logger.info("Verified submission stored for %s", record.username)
        self._later(self.reset_delay, self.reset)
        self.refresher.refresh_later(self.refresh_delay)
        return SubmitResult(accepted=True)

    def reset(self) -> None:
        self.words = [""] * NUM_WORDS
        self.word_states = ["empty"] * NUM_WORDS
        self.username = ""
        self.username_error = None
        self._show(None, None)
        self.submit_enabled = True
        self.workflow = "idle"

    def _later(self, delay: float, fn: Callable[[], None]) -> None:
        async def _run():
            await asyncio.sleep(delay)
            fn()

        task = asyncio.create_task(_run())
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)

    def toggle_theme(self) -> bool:
        self._touch()
        self.dark_mode = not self.dark_mode
        self.prefs[THEME_KEY] = "true" if self.dark_mode else "false"
        return self.dark_mode

    def state(self) -> FormState:
        return FormState(
            words=[WordField(index=i, value=w, state=s)
                   for i, (w, s) in enumerate(zip(self.words, self.word_states))],
            username=self.username,
            username_state=username_state(self.username),
            username_error=self.username_error,
            message=self.message,
            message_kind=self.message_kind,
            submit_enabled=self.submit_enabled,
            workflow=self.workflow,
            dark_mode=self.dark_mode,
            leaderboard=self.refresher.view,
        )

    async def close(self) -> None:
        timers = list(self._timers)
        for t in timers:
            t.cancel()
        await asyncio.gather(*timers, return_exceptions=True)
        self._timers.clear()
