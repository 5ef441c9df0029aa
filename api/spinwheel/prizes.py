"""Angle → prize mapping for the wheel.

The pointer sits at 12 o'clock; 0° is the top of the wheel. A spin may end at any
real angle (several full turns, or negative), only its value mod 360 matters.
"""
import json
import logging
import math
from collections import defaultdict
from typing import Iterable, Optional, Sequence

from pydantic import TypeAdapter, ValidationError

from .models import PrizeSegment

logger = logging.getLogger(__name__)

DEFAULT_SEGMENTS: tuple[PrizeSegment, ...] = (
    PrizeSegment(min_degree=330, max_degree=360, amount=100),
    PrizeSegment(min_degree=0, max_degree=30, amount=100),
    PrizeSegment(min_degree=30, max_degree=90, amount=500),
    PrizeSegment(min_degree=90, max_degree=150, amount=200),
    PrizeSegment(min_degree=150, max_degree=210, amount=20),
    PrizeSegment(min_degree=210, max_degree=270, amount=50),
    PrizeSegment(min_degree=270, max_degree=330, amount=300),
)


class PrizeTableError(ValueError):
    pass


def normalize_angle(angle) -> Optional[float]:
    """Map any real angle into [0, 360). Returns None for non-numeric or non-finite input."""
    # reduce ints exactly first; huge ones do not fit in a float
    if isinstance(angle, int) and not isinstance(angle, bool):
        angle = angle % 360
    try:
        value = float(angle)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(value):
        return None
    normalized = ((value % 360) + 360) % 360
    # tiny negatives round up to exactly 360.0
    if normalized >= 360:
        normalized = 0.0
    return normalized


def _arcs(segment: PrizeSegment) -> list[tuple[float, float]]:
    if segment.wraps:
        arcs = [(segment.min_degree, 360.0)]
        if segment.max_degree > 0:
            arcs.append((0.0, segment.max_degree))
        return arcs
    return [(segment.min_degree, segment.max_degree)]


class PrizeTable:
    """An immutable set of segments that must tile [0, 360) exactly."""

    def __init__(self, segments: Iterable[PrizeSegment], fallback_amount: Optional[int] = None):
        self._segments: tuple[PrizeSegment, ...] = tuple(segments)
        if not self._segments:
            raise PrizeTableError("prize table needs at least one segment")
        self._check_partition()
        self.fallback_amount = (
            fallback_amount if fallback_amount is not None
            else min(s.amount for s in self._segments)
        )

    def _check_partition(self) -> None:
        arcs = sorted(a for s in self._segments for a in _arcs(s))
        cursor = 0.0
        for start, end in arcs:
            if start > cursor:
                raise PrizeTableError(f"gap in prize table at [{cursor}, {start})")
            if start < cursor:
                raise PrizeTableError(f"overlapping segments at {start}")
            cursor = end
        if cursor != 360:
            raise PrizeTableError(f"gap in prize table at [{cursor}, 360)")

    @classmethod
    def from_json(cls, raw: str) -> "PrizeTable":
        try:
            segments = TypeAdapter(list[PrizeSegment]).validate_json(raw)
        except ValidationError as exc:
            raise PrizeTableError(f"invalid prize segments: {exc}") from exc
        return cls(segments)

    @property
    def segments(self) -> Sequence[PrizeSegment]:
        return self._segments

    def matching_segments(self, angle) -> list[PrizeSegment]:
        normalized = normalize_angle(angle)
        if normalized is None:
            return []
        return [s for s in self._segments if s.contains(normalized)]

    def resolve(self, angle) -> int:
        normalized = normalize_angle(angle)
        segment = None
        if normalized is not None:
            segment = next((s for s in self._segments if s.contains(normalized)), None)
        amount = segment.amount if segment else self.fallback_amount
        if segment is None:
            logger.warning("no segment for rotation=%r normalized=%r, using fallback %s",
                           angle, normalized, amount)
        else:
            logger.debug("rotation=%r normalized=%s prize=%s", angle, normalized, amount)
        return amount

    def amounts(self) -> list[int]:
        return sorted((s.amount for s in self._segments), reverse=True)

    def probabilities(self) -> dict[int, float]:
        """Chance of each amount under a uniformly random terminal angle."""
        widths: dict[int, float] = defaultdict(float)
        for s in self._segments:
            widths[s.amount] += s.width
        return {amount: width / 360 for amount, width in widths.items()}


default_table = PrizeTable(DEFAULT_SEGMENTS)


def load_table(raw: Optional[str]) -> PrizeTable:
    return PrizeTable.from_json(raw) if raw else default_table


def resolve_prize(angle, table: Optional[PrizeTable] = None) -> int:
    return (table or default_table).resolve(angle)


def list_prize_amounts(table: Optional[PrizeTable] = None) -> list[int]:
    return (table or default_table).amounts()
