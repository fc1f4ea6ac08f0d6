from typing import Any, List, Literal

from pydantic import BaseModel, Field, StrictBool, TypeAdapter, field_validator

from constants import MAX_INTEREST_ENTRIES, MAX_INTEREST_LENGTH, MAX_INTERESTS, MAX_MESSAGE_LENGTH


class Envelope(BaseModel):
    """Every websocket frame: ``{"event": "...", "data": ...}``."""
    event: str
    data: Any = None


class JoinQueueRequest(BaseModel):
    interests: List[str] = Field(default_factory=list, max_length=MAX_INTEREST_ENTRIES)

    @field_validator("interests")
    @classmethod
    def normalize_interests(cls, value: List[str]) -> List[str]:
        tags = []
        seen = set()
        for raw in value:
            tag = raw.strip().lower()
            if not tag or tag in seen:
                continue
            if len(tag) > MAX_INTEREST_LENGTH:
                raise ValueError(f"interest '{tag[:MAX_INTEREST_LENGTH]}...' is longer than {MAX_INTEREST_LENGTH} characters")
            if len(tags) == MAX_INTERESTS:
                raise ValueError(f"at most {MAX_INTERESTS} interests are allowed")
            seen.add(tag)
            tags.append(tag)
        return tags


class NextPartnerRequest(JoinQueueRequest):
    pass


class SendMessageRequest(BaseModel):
    text: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)


class SignalPayload(BaseModel):
    type: Literal["offer", "answer", "ice-candidate"]
    payload: Any = None


class SignalRequest(BaseModel):
    target: str = Field(min_length=1)
    signal: SignalPayload


TypingFlag = TypeAdapter(StrictBool)


class MatchedEvent(BaseModel):
    partnerId: str
    commonInterests: List[str]


class ErrorEvent(BaseModel):
    event: str
    detail: str
