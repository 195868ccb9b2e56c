"""Position samples and the noise filter applied to them during a run.

The filter is pure: it looks at a raw sample, the last accepted sample and the
last route point and returns a ``FilterDecision``.  The session machine owns
all state and applies the decision.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, NamedTuple

from gpxpy.geo import haversine_distance


@dataclass(frozen=True)
class GeoSample:
    latitude: float
    longitude: float
    horizontal_accuracy_m: float
    timestamp: datetime
    instant_speed_mps: float | None = None

    def distance_to(self, other: GeoSample) -> float:
        """Great-circle distance to *other* in meters."""
        return haversine_distance(self.latitude, self.longitude, other.latitude, other.longitude)

    def seconds_since(self, other: GeoSample) -> float:
        return (self.timestamp - other.timestamp).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Route point representation stored with a finished run."""
        return {
            "lat": self.latitude,
            "lng": self.longitude,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GeoSample:
        """Build a sample from an API payload.

        Accepts both the long field names and the short ``lat``/``lng`` form used
        for stored routes.  ``timestamp`` is an ISO-8601 string.
        """
        speed = data.get("instant_speed_mps")
        return cls(
            latitude=float(data["latitude"] if "latitude" in data else data["lat"]),
            longitude=float(data["longitude"] if "longitude" in data else data["lng"]),
            horizontal_accuracy_m=float(data.get("horizontal_accuracy_m", 0.0)),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            instant_speed_mps=float(speed) if speed is not None else None,
        )


class FilterDecision(NamedTuple):
    accepted: bool  # passed every rule; delta_meters counts toward distance
    delta_meters: float  # distance from the previous accepted sample
    moves_position: bool  # sample becomes the new current position
    append_to_route: bool  # sample is added to the visual trail


class GeoSampleFilter:
    """Accept/reject rules for raw samples plus the route-inclusion test."""

    def __init__(
        self,
        max_accuracy_m: float = 25.0,
        min_step_m: float = 1.0,
        max_step_m: float = 100.0,
        route_min_spacing_m: float = 5.0,
        route_min_speed_mps: float = 0.5,
        route_max_speed_mps: float = 10.0,
    ) -> None:
        self.max_accuracy_m = max_accuracy_m
        self.min_step_m = min_step_m
        self.max_step_m = max_step_m
        self.route_min_spacing_m = route_min_spacing_m
        self.route_min_speed_mps = route_min_speed_mps
        self.route_max_speed_mps = route_max_speed_mps

    @classmethod
    def from_config(cls, tracking: dict[str, Any]) -> GeoSampleFilter:
        return cls(
            max_accuracy_m=float(tracking["max_accuracy_m"]),
            min_step_m=float(tracking["min_step_m"]),
            max_step_m=float(tracking["max_step_m"]),
            route_min_spacing_m=float(tracking["route_min_spacing_m"]),
            route_min_speed_mps=float(tracking["route_min_speed_mps"]),
            route_max_speed_mps=float(tracking["route_max_speed_mps"]),
        )

    def evaluate(
        self,
        sample: GeoSample,
        previous: GeoSample | None,
        last_route_point: GeoSample | None = None,
        route_length: int = 0,
    ) -> FilterDecision:
        append = self.include_in_route(sample, last_route_point, route_length)

        if sample.horizontal_accuracy_m > self.max_accuracy_m:
            return FilterDecision(False, 0.0, False, append)

        if previous is None:
            # First fix of the run: nothing to measure against yet
            return FilterDecision(True, 0.0, True, append)

        delta = sample.distance_to(previous)
        if delta < self.min_step_m:
            return FilterDecision(False, delta, False, append)

        if not 0.0 < delta < self.max_step_m:
            # GPS jump: track the new position but never count the distance
            return FilterDecision(False, delta, True, append)

        return FilterDecision(True, delta, True, append)

    def include_in_route(self, sample: GeoSample, last_route_point: GeoSample | None, route_length: int) -> bool:
        if route_length < 2 or last_route_point is None:
            return True
        spacing = sample.distance_to(last_route_point)
        if spacing < self.route_min_spacing_m:
            return False
        seconds = sample.seconds_since(last_route_point)
        if seconds <= 0:
            return False
        speed = spacing / seconds
        return self.route_min_speed_mps <= speed <= self.route_max_speed_mps
