"""CLI command: status: show an owner's totals, streak and today's goal."""

from datetime import datetime

from tabulate import tabulate

from runledger.core import Ledger


def run(owner_id: str) -> None:
    """Print lifetime totals, the streak and today's daily-goal progress."""
    with Ledger() as ledger:
        from runledger.stats import get_lifetime_totals, get_recent_runs

        totals = get_lifetime_totals(owner_id)
        streak = ledger.streak.get(owner_id)
        today = datetime.now(ledger.home_tz).date()
        progress = ledger.daily_goal.get(owner_id, today)
        recent = get_recent_runs(owner_id, limit=5)

        rows = [
            ["Runs", f"{totals['runs']:,}"],
            ["Distance", f"{totals['distance_meters'] / 1000:.2f} km"],
            ["Time", f"{totals['duration_seconds'] / 60:.0f} min"],
            ["Gems", f"{totals['gems']:,}"],
            ["Current streak", streak.current_streak if streak else 0],
            ["Longest streak", streak.longest_streak if streak else 0],
            ["Freeze tokens", streak.freeze_tokens_remaining if streak else ledger.streak.initial_freeze_tokens],
        ]
        if progress is not None:
            rows.append(["Today", f"{progress.seconds_completed / 60:.0f}/{progress.minutes_goal} min"])
        else:
            rows.append(["Today", f"0/{ledger.daily_goal.default_minutes_goal} min"])
        print(tabulate(rows, tablefmt="simple"))

        if recent:
            print()
            print(
                tabulate(
                    [
                        [
                            str(r.date),
                            f"{r.distance_meters / 1000:.2f}",
                            f"{r.duration_seconds / 60:.0f}",
                            r.gems_earned,
                            "⚠" if r.is_flagged else "",
                        ]
                        for r in recent
                    ],
                    headers=["Date", "km", "min", "Gems", "Flag"],
                    tablefmt="simple",
                )
            )
        elif totals["runs"] == 0:
            print("\nNo runs in database.")
