from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class NotificationPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = Field(min_length=1)
    body: str = Field(min_length=1)


class ErrorClass(str, Enum):
    PERMANENTLY_INVALID = "permanently_invalid"
    TRANSIENT = "transient"


@dataclass(frozen=True)
class DeliveryOutcome:
    recipient: str
    success: bool
    error_class: ErrorClass | None = None
    detail: str | None = None
    pruned: bool = False


@dataclass(frozen=True)
class DispatchResult:
    success_count: int = 0
    outcomes: list[DeliveryOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def failure_count(self) -> int:
        return self.total - self.success_count

    def to_dict(self) -> dict[str, int]:
        return {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "total": self.total,
        }


# Request bodies


class SendRequest(BaseModel):
    token: str = Field(min_length=1)
    title: str = Field(min_length=1)
    body: str = Field(min_length=1)


class ScheduleRequest(SendRequest):
    date: str
    time: str


class BroadcastRequest(BaseModel):
    title: str = Field(min_length=1)
    body: str = Field(min_length=1)
    date: str | None = None
    time: str | None = None


class RegisterTokenRequest(BaseModel):
    token: str = Field(min_length=1)
