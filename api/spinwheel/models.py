from datetime import date, datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, model_validator


class PrizeSegment(BaseModel):
    """Half-open arc of the wheel mapped to one prize amount.

    ``min_degree > max_degree`` marks a segment that wraps across 0°.
    """
    min_degree: float = Field(ge=0, le=360)
    max_degree: float = Field(ge=0, le=360)
    amount: int = Field(gt=0)

    class Config:
        frozen = True

    @model_validator(mode="after")
    def _non_empty(self):
        if self.min_degree == self.max_degree:
            raise ValueError(f"segment [{self.min_degree}, {self.max_degree}) is empty")
        return self

    @property
    def wraps(self) -> bool:
        return self.min_degree > self.max_degree

    @property
    def width(self) -> float:
        if self.wraps:
            return (360 - self.min_degree) + self.max_degree
        return self.max_degree - self.min_degree

    def contains(self, normalized: float) -> bool:
        if self.wraps:
            return normalized >= self.min_degree or normalized < self.max_degree
        return self.min_degree <= normalized < self.max_degree


class SpinPhase(str, Enum):
    IDLE = "idle"
    SPINNING = "spinning"
    RESOLVED = "resolved"
    REGISTERED = "registered"


class SpinTiming(BaseModel):
    min_revolutions: int = Field(default=5, ge=5)
    spin_duration_seconds: float = Field(default=10.0, ge=0)
    settle_delay_seconds: float = Field(default=0.5, ge=0)


class RequestContext(BaseModel):
    """Browser-side facts forwarded to the sinks with a registration."""
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    fbc: Optional[str] = None
    fbp: Optional[str] = None


class Submission(BaseModel):
    email: str
    prize_amount: int
    timestamp: datetime
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    # only the birthday variant of the form sends this
    birthday: Optional[date] = None


class TrackingResult(BaseModel):
    lead_sent: bool = False
    purchase_sent: bool = False
