"""CLI command: achievements: show an owner's achievement progress."""

from tabulate import tabulate

from runledger.core import Ledger


def run(owner_id: str) -> None:
    with Ledger() as ledger:
        data = ledger.achievements.get_achievements(owner_id)

    rows = []
    for category, items in data["achievements"].items():
        for item in items:
            rows.append(
                [
                    category,
                    item["title"],
                    f"{item['progress_ratio']:.0%}",
                    "✓" if item["is_unlocked"] else "",
                ]
            )
    print(tabulate(rows, headers=["Category", "Achievement", "Progress", "Unlocked"], tablefmt="simple"))
    print(f"\n{data['unlocked']} of {data['total']} unlocked")
