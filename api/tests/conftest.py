from __future__ import annotations

import pytest

from spinwheel.models import RequestContext, Submission, TrackingResult


class FakeLeadSink:
    def __init__(self, ok: bool = True, exc: Exception | None = None) -> None:
        self.ok = ok
        self.exc = exc
        self.saved: list[Submission] = []

    def save(self, submission: Submission) -> bool:
        self.saved.append(submission)
        if self.exc is not None:
            raise self.exc
        return self.ok


class FakeTrackingSink:
    def __init__(self, exc: Exception | None = None) -> None:
        self.exc = exc
        self.calls: list[tuple[str, int, RequestContext]] = []

    async def track(self, email: str, prize_amount: int, context: RequestContext) -> TrackingResult:
        self.calls.append((email, prize_amount, context))
        if self.exc is not None:
            raise self.exc
        return TrackingResult(lead_sent=True, purchase_sent=True)


class FixedRandom:
    """Stands in for random.Random; always lands on the same fraction of a turn."""

    def __init__(self, value: float) -> None:
        self.value = value

    def random(self) -> float:
        return self.value


@pytest.fixture
def lead_sink() -> FakeLeadSink:
    return FakeLeadSink()


@pytest.fixture
def tracking_sink() -> FakeTrackingSink:
    return FakeTrackingSink()
