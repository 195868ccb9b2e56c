"""Running distance, pace and calorie estimate for an active session."""

from __future__ import annotations

import math
from typing import Any


class DistanceAccumulator:
    """Accumulates accepted distance and derives pace/calories on each tick.

    ``average_pace_min_per_km`` is the pace-to-date recomputed from totals on
    every tick, exactly like ``current_pace_min_per_km``.
    """

    def __init__(self, calories_per_minute: float = 10.0) -> None:
        self.calories_per_minute = calories_per_minute
        self.reset()

    @classmethod
    def from_config(cls, tracking: dict[str, Any]) -> DistanceAccumulator:
        return cls(calories_per_minute=float(tracking["calories_per_minute"]))

    def reset(self) -> None:
        self.distance_meters = 0.0
        self.current_pace_min_per_km = 0.0
        self.average_pace_min_per_km = 0.0
        self.peak_speed_mps = 0.0
        self.calories_estimate = 0

    def add(self, delta_meters: float, speed_mps: float | None = None) -> None:
        """Record one accepted increment and the speed observed with it."""
        self.distance_meters += delta_meters
        if speed_mps is not None and speed_mps > self.peak_speed_mps:
            self.peak_speed_mps = speed_mps

    def tick(self, elapsed_seconds: float) -> None:
        if self.distance_meters <= 0:
            return

        elapsed_minutes = elapsed_seconds / 60.0
        pace = elapsed_minutes / (self.distance_meters / 1000.0)
        self.current_pace_min_per_km = pace
        self.average_pace_min_per_km = pace

        multiplier = min(max(1.0 / max(pace, 1.0), 0.5), 2.0)
        self.calories_estimate = math.floor(elapsed_minutes * self.calories_per_minute * multiplier)
