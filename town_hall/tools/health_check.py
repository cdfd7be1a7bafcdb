"""Check that the save database and the reaction backend are reachable."""
from __future__ import annotations

import argparse
import asyncio
import os
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from ._common import add_db_argument, open_service


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: str
    detail: str


def env_checks(env: Mapping[str, str]) -> List[CheckResult]:
    results: List[CheckResult] = []
    if env.get("LLM_MODE", "").lower() == "mock":
        results.append(CheckResult("llm_mode", "warning", "mock mode; reactions are canned"))
    elif env.get("LLM_API_BASE"):
        results.append(CheckResult("llm_api_base", "ok", env["LLM_API_BASE"]))
    else:
        results.append(CheckResult("llm_api_base", "warning", "unset; using local default endpoint"))
    if env.get("TOWN_HALL_TELEMETRY_DB"):
        results.append(CheckResult("telemetry", "ok", "metrics recorded"))
    else:
        results.append(CheckResult("telemetry", "warning", "TOWN_HALL_TELEMETRY_DB unset; metrics disabled"))
    return results


def service_checks(report: Dict[str, object]) -> List[CheckResult]:
    services = report["services"]
    return [
        CheckResult(name, "ok" if info["status"] == "ok" else "error", info["message"])
        for name, info in services.items()
    ]


def _print_table(results: Iterable[CheckResult]) -> None:
    header = f"{'Check':<20} {'Status':<8} Detail"
    print(header)
    print("-" * len(header))
    for result in results:
        print(f"{result.name:<20} {result.status:<8} {result.detail}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Town Hall health check")
    add_db_argument(parser)
    args = parser.parse_args(argv)

    with open_service(args) as service:
        report = asyncio.run(service.health())

    results = env_checks(os.environ) + service_checks(report)
    _print_table(results)
    return 1 if any(result.status == "error" for result in results) else 0


if __name__ == "__main__":  # pragma: no cover - CLI tool
    raise SystemExit(main())
