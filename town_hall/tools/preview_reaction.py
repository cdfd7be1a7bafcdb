"""Ask one demographic what it thinks of a policy, without touching any save."""
from __future__ import annotations

import argparse
import asyncio
import json
from typing import Optional, Sequence

from ._common import add_db_argument, open_service


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Preview a single demographic reaction")
    parser.add_argument("demographic", help="Demographic id, e.g. youth")
    parser.add_argument("--title", required=True)
    parser.add_argument("--description", required=True)
    add_db_argument(parser)
    args = parser.parse_args(argv)

    with open_service(args) as service:
        if args.demographic not in service.registry.ids():
            parser.error(
                f"unknown demographic {args.demographic!r}; choose from {', '.join(service.registry.ids())}"
            )
        reaction = asyncio.run(
            service.preview_reaction(args.demographic, args.title, args.description)
        )

    print(json.dumps(reaction.to_payload(), indent=2))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI tool
    raise SystemExit(main())
