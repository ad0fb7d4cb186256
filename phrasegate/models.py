# Pydantic models and data structures for API IO.

from __future__ import annotations
from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Literal

WordState = Literal["empty", "correct", "incorrect"]
UsernameState = Literal["empty", "valid", "invalid"]
WorkflowState = Literal["idle", "validating", "rejected", "accepted"]
MessageKind = Literal["success", "error"]
LeaderboardStatus = Literal["loading", "list", "empty", "error", "unavailable"]

EMPTY_PLACEHOLDER = "No verified submissions yet. Be the first!"
ERROR_PLACEHOLDER = "Error loading submissions"
LOADING_PLACEHOLDER = "Loading submissions..."


def iso_utc(dt: datetime) -> str:
    # Naive values come back from SQLite and are stored as UTC.
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return iso_utc(datetime.now(timezone.utc))


class SubmissionRecord(BaseModel):
    username: str = Field(..., min_length=1, max_length=50, description="Discord handle")
    phrase: str = Field(..., description="The 12 words joined by single spaces")
    timestamp: str = Field(default_factory=utc_now_iso, description="ISO-8601 UTC time")
    verified: bool = True

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: str) -> str:
        try:
            datetime.fromisoformat(v.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError("timestamp must be ISO-8601")
        return v

    def submitted_at(self) -> datetime:
        dt = datetime.fromisoformat(self.timestamp.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt


class LeaderboardEntry(BaseModel):
    rank: int
    username: str
    phrase: str
    phrase_preview: str
    timestamp: str
    time_ago: str


class LeaderboardView(BaseModel):
    status: LeaderboardStatus = "loading"
    entries: List[LeaderboardEntry] = Field(default_factory=list)
    # Only set for placeholder statuses
    message: Optional[str] = LOADING_PLACEHOLDER


class WordField(BaseModel):
    index: int
    value: str
    state: WordState


class FormState(BaseModel):
    words: List[WordField]
    username: str
    username_state: UsernameState
    username_error: Optional[str] = None
    message: Optional[str] = None
    message_kind: Optional[MessageKind] = None
    submit_enabled: bool
    workflow: WorkflowState
    dark_mode: bool
    leaderboard: LeaderboardView


class SessionResponse(BaseModel):
    session_id: str
    token: str
    state: FormState


class WordRequest(BaseModel):
    token: str = Field(..., description="Session token issued by server")
    index: int = Field(..., ge=0, le=11, description="Word slot, 0-based")
    value: str = ""


class WordResponse(BaseModel):
    index: int
    state: WordState


class UsernameRequest(BaseModel):
    token: str
    value: str = ""


class UsernameResponse(BaseModel):
    state: UsernameState
    error: Optional[str] = None


class TokenRequest(BaseModel):
    token: str


class SubmitResponse(BaseModel):
    accepted: bool
    error_count: int = 0
    state: FormState
