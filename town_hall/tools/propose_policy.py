"""Submit a policy against a stored game and print the turn result."""
from __future__ import annotations

import argparse
import asyncio
from typing import Optional, Sequence

from ..engine import ProposalValidationError
from ..models import TurnOutcome
from ..service import GameNotFoundError
from ._common import add_db_argument, open_service


def render_outcome(outcome: TurnOutcome) -> str:
    state = outcome.state
    lines = [
        f"Turn {outcome.new_turn_number}: '{outcome.policy.title}' {outcome.policy.status.value}",
        f"Approval {state.approval_rating:g}% ({outcome.delta.approval:+d})",
        f"Economic health {state.economic_health:g}% ({outcome.delta.economic:+d})",
        f"Budget ${state.budget:,.0f} ({outcome.delta.budget:+,.0f})",
        "",
    ]
    for key, reaction in outcome.reactions.items():
        marker = " (fallback)" if key in outcome.fallbacks else ""
        demo = state.demographics[key]
        lines.append(
            f"- {demo.name}{marker}: happiness {reaction.happiness_change:+g} -> {demo.happiness:g}, "
            f"support {demo.support_level:g}. {reaction.explanation}"
        )
    return "\n".join(lines)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Propose a policy and advance the turn")
    parser.add_argument("player", help="Player name")
    parser.add_argument("save", help="Save name")
    parser.add_argument("--title", required=True, help="Policy title")
    parser.add_argument("--description", required=True, help="Policy description")
    parser.add_argument("--budget", type=float, default=0.0, help="Declared budget effect")
    add_db_argument(parser)
    args = parser.parse_args(argv)

    effects = {"budget": args.budget} if args.budget else {}
    with open_service(args) as service:
        try:
            outcome = asyncio.run(
                service.submit_policy(args.player, args.save, args.title, args.description, effects)
            )
        except (ProposalValidationError, GameNotFoundError) as exc:
            parser.error(str(exc))

    print(render_outcome(outcome))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI tool
    raise SystemExit(main())
