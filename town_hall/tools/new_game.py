"""Create (or reset) a save with the default starting position."""
from __future__ import annotations

import argparse
from typing import Optional, Sequence

from ._common import add_db_argument, open_service


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Start a new Town Hall game")
    parser.add_argument("player", help="Player name")
    parser.add_argument("save", help="Save name")
    add_db_argument(parser)
    args = parser.parse_args(argv)

    with open_service(args) as service:
        save_id, state = service.create_game(args.player, args.save)

    print(f"Created save #{save_id} '{args.save}' for {args.player}")
    print(f"Budget: ${state.budget:,.0f}")
    print(f"Approval: {state.approval_rating:g}%")
    print(f"Economic health: {state.economic_health:g}%")
    for demo in state.demographics.values():
        print(f"  {demo.name:<24} {demo.population_percentage:>5g}% of town, happiness {demo.happiness:g}")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI tool
    raise SystemExit(main())
