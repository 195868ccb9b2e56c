"""Accepted runs and their stored route trails."""

from __future__ import annotations

import json
from typing import Any

from peewee import (
    BooleanField,
    CharField,
    DateField,
    DateTimeField,
    FloatField,
    IntegerField,
    Model,
    TextField,
)

from .db import db


class Run(Model):
    """One finished session that passed validation.

    ``session_id`` is unique, which is what makes a second insert of the same
    session fail instead of double-counting it.
    """

    session_id = CharField(unique=True)
    owner_id = CharField(index=True)
    start_time = DateTimeField(null=True)
    end_time = DateTimeField(null=True)
    date = DateField(index=True)  # calendar day in the home timezone
    distance_meters = FloatField()
    duration_seconds = FloatField()
    average_speed_mps = FloatField(default=0.0)
    peak_speed_mps = FloatField(default=0.0)
    average_pace_min_per_km = FloatField(default=0.0)
    calories_estimate = IntegerField(default=0)
    gems_earned = IntegerField(default=0)
    is_flagged = BooleanField(default=False)

    class Meta:
        database = db
        table_name = "run"

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "owner_id": self.owner_id,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "date": str(self.date),
            "distance_meters": self.distance_meters,
            "duration_seconds": self.duration_seconds,
            "average_speed_mps": self.average_speed_mps,
            "peak_speed_mps": self.peak_speed_mps,
            "average_pace_min_per_km": self.average_pace_min_per_km,
            "calories_estimate": self.calories_estimate,
            "gems_earned": self.gems_earned,
            "is_flagged": self.is_flagged,
        }


class RunRoute(Model):
    session_id = CharField(unique=True)
    coordinates = TextField()  # JSON list of {"lat", "lng", "timestamp"}

    class Meta:
        database = db
        table_name = "run_route"

    @property
    def points(self) -> list[dict[str, Any]]:
        return json.loads(self.coordinates)


def save_route(session_id: str, points: list[dict[str, Any]]) -> None:
    """Store (or replace) the trail for *session_id*."""
    payload = json.dumps(points)
    (
        RunRoute.insert(session_id=session_id, coordinates=payload)
        .on_conflict(conflict_target=[RunRoute.session_id], update={RunRoute.coordinates: payload})
        .execute()
    )


def get_route(session_id: str) -> list[dict[str, Any]] | None:
    route = RunRoute.get_or_none(RunRoute.session_id == session_id)
    return route.points if route else None
