"""Plausibility checks for a finished run.

Hard violations reject the run before anything is written.  A run that is
merely faster than an elite human is accepted and flagged for audit.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

from .appconfig import get_section
from .errors import DISTANCE_VIOLATION, DURATION_VIOLATION, PACE_VIOLATION, ValidationError

logger = logging.getLogger(__name__)

METERS_PER_MILE = 1609.344
METERS_PER_UNIT = {"mi": METERS_PER_MILE, "km": 1000.0}
MPS_TO_KPH = 3.6


@dataclass(frozen=True)
class ValidationResult:
    distance_meters: float
    duration_seconds: float
    average_speed_mps: float  # reported, or implied when none was reported
    implied_speed_kph: float
    gems_earned: int
    is_flagged: bool


def gems_for_distance(distance_meters: float, unit: str = "mi") -> int:
    """One gem per whole unit of distance."""
    try:
        per_unit = METERS_PER_UNIT[unit]
    except KeyError:
        raise ValueError(f"unsupported distance unit {unit!r}") from None
    return math.floor(distance_meters / per_unit)


class AntiCheatValidator:
    def __init__(
        self,
        max_distance_km: float = 160.0,
        max_duration_s: float = 86400,
        min_speed_kph: float = 0.8,
        pace_check_min_distance_km: float = 1.6,
        flag_speed_kph: float = 43.0,
        distance_unit: str = "mi",
    ) -> None:
        self.max_distance_km = max_distance_km
        self.max_duration_s = max_duration_s
        self.min_speed_kph = min_speed_kph
        self.pace_check_min_distance_km = pace_check_min_distance_km
        self.flag_speed_kph = flag_speed_kph
        self.distance_unit = distance_unit

    @classmethod
    def from_config(cls, config: dict[str, Any] | None) -> AntiCheatValidator:
        section = get_section(config, "anticheat")
        return cls(
            max_distance_km=float(section["max_distance_km"]),
            max_duration_s=float(section["max_duration_s"]),
            min_speed_kph=float(section["min_speed_kph"]),
            pace_check_min_distance_km=float(section["pace_check_min_distance_km"]),
            flag_speed_kph=float(section["flag_speed_kph"]),
            distance_unit=(config or {}).get("distance_unit", "mi"),
        )

    def validate(
        self,
        distance_meters: float,
        duration_seconds: float,
        average_speed_mps: float | None = None,
    ) -> ValidationResult:
        """Raise ``ValidationError`` for implausible runs, else describe the run.

        A distance of exactly zero is rejected: the accepted range is
        ``(0, max_distance_km]``.
        """
        distance_km = distance_meters / 1000.0
        if not 0 < distance_km <= self.max_distance_km:
            raise ValidationError(
                DISTANCE_VIOLATION,
                f"distance must be greater than 0 and at most {self.max_distance_km:g} km",
            )
        if not 0 < duration_seconds <= self.max_duration_s:
            raise ValidationError(
                DURATION_VIOLATION,
                f"duration must be greater than 0 and at most {self.max_duration_s:g} seconds",
            )

        implied_kph = distance_km / (duration_seconds / 3600.0)
        if implied_kph < self.min_speed_kph and distance_km > self.pace_check_min_distance_km:
            raise ValidationError(
                PACE_VIOLATION,
                "distance too high for reported speed; please ensure accurate tracking",
            )

        speed_mps = average_speed_mps if average_speed_mps else implied_kph / MPS_TO_KPH
        is_flagged = speed_mps * MPS_TO_KPH > self.flag_speed_kph
        if is_flagged:
            logger.warning("suspicious average speed %.1f km/h; flagging run", speed_mps * MPS_TO_KPH)

        return ValidationResult(
            distance_meters=distance_meters,
            duration_seconds=duration_seconds,
            average_speed_mps=speed_mps,
            implied_speed_kph=implied_kph,
            gems_earned=gems_for_distance(distance_meters, self.distance_unit),
            is_flagged=is_flagged,
        )
