"""Turns a policy and a demographic snapshot into a validated reaction.

The backend's reply is untrusted text. It is reduced to a JSON object, checked
against the reaction schema, and anything that fails along the way (including
timeouts and an unreachable backend) becomes the neutral fallback reaction.
``ReactionEvaluator.evaluate`` therefore always returns a well-formed
:class:`~town_hall.models.DemographicReaction`.
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Optional

from .llm_client import LLMGenerationError, LLMNotEnabledError, LLMTimeoutError
from .models import (
    Demographic,
    DemographicReaction,
    InvalidReaction,
    ReactionResult,
    ValidReaction,
)
from .telemetry import TelemetryCollector

logger = logging.getLogger(__name__)

EXPLANATION_MAX_LENGTH = 200

# field -> (lower, upper)
REACTION_BOUNDS = {
    "happiness_change": (-50.0, 50.0),
    "economic_impact": (-25.0, 25.0),
    "support_likelihood": (0.0, 100.0),
}

SYSTEM_PROMPT = (
    "You voice one constituency in a local town political simulation. "
    "Reply with a single JSON object and nothing else."
)


class ReactionParseError(ValueError):
    """Raised when no JSON object can be recovered from backend output."""


def build_reaction_prompt(demographic: Demographic, policy_text: str) -> str:
    concerns = ", ".join(demographic.concerns) if demographic.concerns else "None"
    return f"""You are representing the {demographic.name} demographic in a local town political simulation.

PERSONA: {demographic.persona}

CURRENT STATE:
- Happiness: {demographic.happiness:g}/100
- Recent concerns: {concerns}
- Support level: {demographic.support_level:g}/100

POLICY PROPOSAL: "{policy_text}"

Evaluate this policy proposal and respond with ONLY a JSON object in this exact format:
{{
  "happiness_change": <number between -50 and 50>,
  "economic_impact": <number between -25 and 25>,
  "support_likelihood": <number between 0 and 100>,
  "explanation": "<brief explanation in under {EXPLANATION_MAX_LENGTH} characters>"
}}

Consider how this policy would realistically affect your demographic. Be consistent with your persona and current state."""


def find_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` substring of ``text``, if any."""

    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:index + 1]
        start = text.find("{", start + 1)
    return None


def parse_reaction_payload(text: str) -> Any:
    candidate = find_json_object(text)
    if candidate is None:
        candidate = text.strip()
    # ValueError also covers integer literals past the interpreter's digit limit.
    try:
        return json.loads(candidate)
    except (ValueError, RecursionError) as exc:
        raise ReactionParseError(f"Invalid JSON response: {exc}") from exc


def validate_reaction(payload: Any) -> ReactionResult:
    """Check a decoded payload against the reaction schema."""

    if not isinstance(payload, dict):
        return InvalidReaction(f"expected a JSON object, got {type(payload).__name__}")

    values = {}
    for name, (lower, upper) in REACTION_BOUNDS.items():
        if name not in payload:
            return InvalidReaction(f"missing field {name}")
        value = payload[name]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return InvalidReaction(f"{name} must be a number")
        try:
            number = float(value)
        except OverflowError:
            return InvalidReaction(f"{name} is too large")
        if not math.isfinite(number) or not lower <= number <= upper:
            return InvalidReaction(f"{name}={number:g} outside [{lower:g}, {upper:g}]")
        values[name] = value

    explanation = payload.get("explanation")
    if not isinstance(explanation, str):
        return InvalidReaction("explanation must be a string")
    if len(explanation) > EXPLANATION_MAX_LENGTH:
        return InvalidReaction(f"explanation longer than {EXPLANATION_MAX_LENGTH} characters")

    return ValidReaction(DemographicReaction(explanation=explanation, **values))


@dataclass(frozen=True)
class Evaluation:
    reaction: DemographicReaction
    outcome: str = "valid"
    reason: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.outcome != "valid"


class ReactionEvaluator:
    """Response generator adapter around a text-completion backend.

    ``backend`` only needs an ``async complete(prompt, *, system=None) -> str``
    method, which :class:`~town_hall.llm_client.LLMClient` provides.
    """

    def __init__(
        self,
        backend,
        *,
        timeout: float = 45.0,
        telemetry: Optional[TelemetryCollector] = None,
    ) -> None:
        self._backend = backend
        self._timeout = timeout
        self._telemetry = telemetry

    async def evaluate(self, demographic: Demographic, policy_text: str) -> DemographicReaction:
        evaluation = await self.evaluate_detailed(demographic, policy_text)
        return evaluation.reaction

    async def evaluate_detailed(self, demographic: Demographic, policy_text: str) -> Evaluation:
        """Evaluate and report whether the result is genuine or a fallback."""
        started = time.monotonic()
        evaluation = await self._evaluate(demographic, policy_text)
        duration_ms = (time.monotonic() - started) * 1000
        if evaluation.is_fallback:
            logger.warning(
                "Falling back to neutral reaction for %s (%s): %s",
                demographic.id,
                evaluation.outcome,
                evaluation.reason,
            )
        else:
            logger.info(
                "Reaction generated for %s: happiness %+g, support %g",
                demographic.id,
                evaluation.reaction.happiness_change,
                evaluation.reaction.support_likelihood,
            )
        if self._telemetry is not None:
            self._telemetry.track_llm_activity(
                demographic.id,
                success=not evaluation.is_fallback,
                duration_ms=duration_ms,
                outcome=evaluation.outcome,
                error=evaluation.reason,
            )
        return evaluation

    async def _evaluate(self, demographic: Demographic, policy_text: str) -> Evaluation:
        prompt = build_reaction_prompt(demographic, policy_text)
        try:
            raw = await asyncio.wait_for(
                self._backend.complete(prompt, system=SYSTEM_PROMPT),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, LLMTimeoutError):
            return self._fallback("timeout", f"no reply within {self._timeout:g}s")
        except LLMNotEnabledError as exc:
            return self._fallback("unavailable", str(exc))
        except LLMGenerationError as exc:
            return self._fallback("unavailable", str(exc))
        except Exception as exc:
            logger.exception("Unexpected backend failure for %s", demographic.id)
            return self._fallback("error", f"{type(exc).__name__}: {exc}")

        logger.debug("Raw reaction for %s: %s", demographic.id, raw)
        try:
            payload = parse_reaction_payload(raw)
        except ReactionParseError as exc:
            return self._fallback("malformed", str(exc))

        result = validate_reaction(payload)
        if isinstance(result, InvalidReaction):
            return self._fallback("invalid", result.reason)
        return Evaluation(result.reaction)

    @staticmethod
    def _fallback(outcome: str, reason: str) -> Evaluation:
        return Evaluation(DemographicReaction.neutral(), outcome=outcome, reason=reason)


__all__ = [
    "EXPLANATION_MAX_LENGTH",
    "REACTION_BOUNDS",
    "ReactionParseError",
    "build_reaction_prompt",
    "find_json_object",
    "parse_reaction_payload",
    "validate_reaction",
    "Evaluation",
    "ReactionEvaluator",
]
