"""Rule-based multi-touch attribution algorithms.

WHAT:
    Seven interchangeable algorithms that turn an ordered touchpoint list into
    per-touchpoint credit fractions. Dispatch is a closed mapping from
    AttributionAlgorithmEnum to one AttributionAlgorithm subclass; an enum
    member without an implementation fails at import time.

WHY:
    Each tenant can keep several attribution models active at once; the
    calculator runs the same journey through each model's algorithm.

INVARIANTS:
    - 0 touchpoints -> no credits
    - first_touch, last_touch, linear, time_decay, u_shaped, w_shaped:
      credits sum to 1.0
    - participation: 1.0 per distinct channel (sum = number of channels)

REFERENCES:
    - touchline/services/attribution/calculator.py (consumer)
    - touchline/models.py: AttributionAlgorithmEnum
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Type
from uuid import UUID

from touchline.models import AttributionAlgorithmEnum

FULL_CREDIT = 1.0
SECONDS_PER_DAY = 86400.0
DEFAULT_HALF_LIFE_DAYS = 7


@dataclass(frozen=True)
class Touchpoint:
    """A classified session, as seen by the attribution algorithms."""
    session_id: UUID
    channel: str
    occurred_at: datetime


@dataclass
class Credit:
    session_id: UUID
    channel: str
    credit: float

    def to_dict(self) -> Dict:
        return {"session_id": self.session_id, "channel": self.channel, "credit": self.credit}


def _credit(touchpoint: Touchpoint, value: float) -> Credit:
    return Credit(session_id=touchpoint.session_id, channel=touchpoint.channel, credit=value)


class AttributionAlgorithm:
    """Common interface: touchpoints in occurrence order -> credits."""

    def calculate(self, touchpoints: Sequence[Touchpoint]) -> List[Credit]:
        if not touchpoints:
            return []
        return self._calculate(list(touchpoints))

    def _calculate(self, touchpoints: List[Touchpoint]) -> List[Credit]:
        raise NotImplementedError


class FirstTouch(AttributionAlgorithm):
    def _calculate(self, touchpoints):
        return [_credit(touchpoints[0], FULL_CREDIT)]


class LastTouch(AttributionAlgorithm):
    def _calculate(self, touchpoints):
        return [_credit(touchpoints[-1], FULL_CREDIT)]


class Linear(AttributionAlgorithm):
    def _calculate(self, touchpoints):
        share = FULL_CREDIT / len(touchpoints)
        return [_credit(tp, share) for tp in touchpoints]


class TimeDecay(AttributionAlgorithm):
    """Exponential decay: weight = 2 ** (-days_before_conversion / half_life).

    A single touchpoint always has zero decay. With several touchpoints, days
    are measured against `converted_at` when given, else against the last
    touchpoint. Weights are normalised to sum to 1.0.
    """

    def __init__(self, half_life_days: float = DEFAULT_HALF_LIFE_DAYS, converted_at: Optional[datetime] = None):
        if half_life_days <= 0:
            raise ValueError("half_life_days must be positive")
        self.half_life_days = float(half_life_days)
        self.converted_at = converted_at

    def _days_before_conversion(self, touchpoint: Touchpoint, touchpoints: List[Touchpoint]) -> float:
        if len(touchpoints) == 1:
            return 0.0
        reference = self.converted_at or touchpoints[-1].occurred_at
        return (reference - touchpoint.occurred_at).total_seconds() / SECONDS_PER_DAY

    def _calculate(self, touchpoints):
        weights = [
            2 ** (-self._days_before_conversion(tp, touchpoints) / self.half_life_days)
            for tp in touchpoints
        ]
        total = sum(weights)
        return [_credit(tp, weight / total) for tp, weight in zip(touchpoints, weights)]


class UShaped(AttributionAlgorithm):
    """40% first, 40% last, 20% split across the middle."""

    FIRST_CREDIT = 0.4
    LAST_CREDIT = 0.4
    MIDDLE_CREDIT = 0.2

    def _calculate(self, touchpoints):
        n = len(touchpoints)
        if n == 1:
            return [_credit(touchpoints[0], FULL_CREDIT)]
        if n == 2:
            return [_credit(touchpoints[0], 0.5), _credit(touchpoints[1], 0.5)]

        middle = touchpoints[1:-1]
        per_middle = self.MIDDLE_CREDIT / len(middle)
        return [
            _credit(touchpoints[0], self.FIRST_CREDIT),
            *[_credit(tp, per_middle) for tp in middle],
            _credit(touchpoints[-1], self.LAST_CREDIT),
        ]


class WShaped(AttributionAlgorithm):
    """30% each to first, middle (n // 2) and last; 10% split across the rest.

    n = 1, 2 and 3 are explicit cases (1.0, halves, thirds).
    """

    KEY_POSITION_CREDIT = 0.3
    OTHER_CREDIT = 0.1

    def _calculate(self, touchpoints):
        n = len(touchpoints)
        if n == 1:
            return [_credit(touchpoints[0], FULL_CREDIT)]
        if n == 2:
            return [_credit(touchpoints[0], 0.5), _credit(touchpoints[1], 0.5)]
        if n == 3:
            return [_credit(tp, FULL_CREDIT / 3.0) for tp in touchpoints]

        key_positions = {0, n // 2, n - 1}
        per_other = self.OTHER_CREDIT / (n - len(key_positions))
        return [
            _credit(tp, self.KEY_POSITION_CREDIT if index in key_positions else per_other)
            for index, tp in enumerate(touchpoints)
        ]


class Participation(AttributionAlgorithm):
    """Every distinct channel gets full credit once.

    The credit points at the channel's first session in the journey, and
    channels keep their first-appearance order.
    """

    def _calculate(self, touchpoints):
        first_by_channel: Dict[str, Touchpoint] = {}
        for tp in touchpoints:
            first_by_channel.setdefault(tp.channel, tp)
        return [_credit(tp, FULL_CREDIT) for tp in first_by_channel.values()]


ALGORITHMS: Dict[AttributionAlgorithmEnum, Type[AttributionAlgorithm]] = {
    AttributionAlgorithmEnum.first_touch: FirstTouch,
    AttributionAlgorithmEnum.last_touch: LastTouch,
    AttributionAlgorithmEnum.linear: Linear,
    AttributionAlgorithmEnum.time_decay: TimeDecay,
    AttributionAlgorithmEnum.u_shaped: UShaped,
    AttributionAlgorithmEnum.w_shaped: WShaped,
    AttributionAlgorithmEnum.participation: Participation,
}

_missing = set(AttributionAlgorithmEnum) - set(ALGORITHMS)
if _missing:
    raise RuntimeError(f"Attribution algorithms without implementation: {sorted(m.value for m in _missing)}")

# Algorithms whose credits must sum to exactly 1.0
FRACTIONAL_ALGORITHMS = frozenset(set(AttributionAlgorithmEnum) - {AttributionAlgorithmEnum.participation})


def get_algorithm(
    algorithm: AttributionAlgorithmEnum,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
    converted_at: Optional[datetime] = None,
) -> AttributionAlgorithm:
    """Instantiate the implementation for an algorithm enum member.

    Args:
        algorithm: AttributionAlgorithmEnum member (or its string value)
        half_life_days: Time-decay half-life (ignored by other algorithms)
        converted_at: Conversion reference time for time-decay

    Raises:
        ValueError: algorithm is not a member of AttributionAlgorithmEnum
    """
    algorithm = AttributionAlgorithmEnum(algorithm)
    if algorithm is AttributionAlgorithmEnum.time_decay:
        return TimeDecay(half_life_days=half_life_days, converted_at=converted_at)
    return ALGORITHMS[algorithm]()
