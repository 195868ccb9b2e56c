"""CLI command: replay: run a recorded GPX track through the session machine.

The machine is driven by the track's own timestamps, one tick per sample, and
the completed session goes through the normal finish pipeline.  The session id
is derived from the owner and the file contents, so replaying the same file
twice is recognised as a duplicate finish.
"""

import hashlib
import uuid
from pathlib import Path

from tabulate import tabulate

from runledger.core import Ledger
from runledger.errors import RunLedgerError
from runledger.formats.gpx import parse_gpx_samples
from runledger.user_context import set_owner_id


class _TrackClock:
    """Clock that reports the time of the sample being replayed."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now


def replay_session_id(owner_id: str, file_path: str) -> str:
    digest = hashlib.sha256(Path(file_path).read_bytes()).hexdigest()
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"runledger:{owner_id}:{digest}"))


def replay(ledger: Ledger, owner_id: str, file_path: str, session_id: str | None = None):
    """Return ``(completed_session, finish_result)`` for the track in *file_path*."""
    samples = parse_gpx_samples(file_path)
    if not samples:
        raise ValueError(f"{file_path} has no timestamped track points")

    clock = _TrackClock(samples[0].timestamp)
    machine = ledger.new_session(
        owner_id,
        session_id=session_id or replay_session_id(owner_id, file_path),
        clock=clock,
        run_ticker=False,
    )
    machine.start()
    for sample in samples:
        clock.now = sample.timestamp
        machine.ingest(sample)
        machine.tick()
    completed = machine.finish()
    return completed, ledger.finish(completed)


def run(file_path: str, owner_id: str, session_id: str | None = None) -> int:
    set_owner_id(owner_id)
    with Ledger() as ledger:
        try:
            completed, result = replay(ledger, owner_id, file_path, session_id)
        except RunLedgerError as e:
            print(f"❌ {e.code}: {e.detail}")
            return 1

    print(
        tabulate(
            [
                ["Session", completed.id],
                ["Distance", f"{completed.distance_meters / 1000:.2f} km"],
                ["Active time", f"{completed.elapsed_seconds / 60:.1f} min"],
                ["Avg pace", f"{completed.average_pace_min_per_km:.2f} min/km"],
                ["Calories", completed.calories_estimate],
                ["Gems", result.gems_earned],
                ["Flagged", "yes" if result.is_flagged else "no"],
                ["Streak", result.streak["current_streak"] if result.streak else 0],
            ],
            tablefmt="simple",
        )
    )
    if result.replayed:
        print("\nThis track was already recorded; showing the stored result.")
    for title in result.unlocked_achievements:
        print(f"🏅 Unlocked: {title}")
    return 0
