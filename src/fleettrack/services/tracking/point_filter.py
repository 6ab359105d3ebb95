"""Classification of incoming GPS samples before they are trusted."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ...config import settings
from ...errors import ValidationError
from ...models.domain import FilterReason, TripPoint
from ..geospatial import haversine_m


@dataclass(slots=True)
class GpsSample:
    """A raw GPS reading as pushed by a field device."""

    latitude: Optional[float]
    longitude: Optional[float]
    captured_at: Optional[datetime] = None
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    altitude: Optional[float] = None


@dataclass(slots=True)
class FilterVerdict:
    is_filtered: bool
    reason: Optional[FilterReason]
    distance_from_prev_m: float
    implied_speed_kmh: Optional[float]

    @property
    def accepted(self) -> bool:
        return not self.is_filtered


def validate_sample(sample: GpsSample) -> None:
    """Reject samples that are malformed rather than merely noisy."""

    if sample.latitude is None or sample.longitude is None:
        raise ValidationError("GPS sample requires latitude and longitude", field="coordinates")
    if not (math.isfinite(sample.latitude) and -90.0 <= sample.latitude <= 90.0):
        raise ValidationError(f"Invalid latitude: {sample.latitude}", field="latitude")
    if not (math.isfinite(sample.longitude) and -180.0 <= sample.longitude <= 180.0):
        raise ValidationError(f"Invalid longitude: {sample.longitude}", field="longitude")
    if sample.accuracy is not None and sample.accuracy < 0:
        raise ValidationError(f"Invalid accuracy: {sample.accuracy}", field="accuracy")
    if sample.speed is not None and not (math.isfinite(sample.speed) and sample.speed >= 0):
        raise ValidationError(f"Invalid speed: {sample.speed}", field="speed")
    if sample.heading is not None and not 0.0 <= sample.heading <= 360.0:
        raise ValidationError(f"Invalid heading: {sample.heading}", field="heading")


def implied_speed_kmh(distance_m: float, previous_at: datetime, current_at: datetime) -> float:
    if distance_m == 0:
        return 0.0
    elapsed = (current_at - previous_at).total_seconds()
    if elapsed <= 0:
        return math.inf
    return distance_m / elapsed * 3.6


def classify_point(
    sample: GpsSample,
    captured_at: datetime,
    previous: Optional[TripPoint],
    *,
    max_accuracy_m: float | None = None,
    max_speed_kmh: float | None = None,
    min_jump_distance_m: float | None = None,
) -> FilterVerdict:
    """Classify a sample against the trip's previous accepted point.

    Rules run in order and the first match wins: a reported accuracy worse than
    ``max_accuracy_m`` gives ``LOW_ACCURACY``; a sample captured before the
    previous accepted point gives ``OUT_OF_ORDER``; a hop longer than
    ``min_jump_distance_m`` travelled faster than ``max_speed_kmh`` gives
    ``IMPLAUSIBLE_JUMP``; anything else is accepted.
    """
    max_accuracy_m = settings.gps_max_accuracy_m if max_accuracy_m is None else max_accuracy_m
    max_speed_kmh = settings.gps_max_plausible_speed_kmh if max_speed_kmh is None else max_speed_kmh
    min_jump_distance_m = (
        settings.gps_jump_min_distance_m if min_jump_distance_m is None else min_jump_distance_m
    )

    if sample.accuracy is not None and sample.accuracy > max_accuracy_m:
        return FilterVerdict(True, FilterReason.LOW_ACCURACY, 0.0, None)

    if previous is None:
        return FilterVerdict(False, None, 0.0, None)

    if captured_at < previous.captured_at:
        return FilterVerdict(True, FilterReason.OUT_OF_ORDER, 0.0, None)

    distance = haversine_m(previous.latitude, previous.longitude, sample.latitude, sample.longitude)
    speed = implied_speed_kmh(distance, previous.captured_at, captured_at)
    if distance > min_jump_distance_m and speed > max_speed_kmh:
        return FilterVerdict(True, FilterReason.IMPLAUSIBLE_JUMP, 0.0, speed)

    return FilterVerdict(False, None, distance, speed)
