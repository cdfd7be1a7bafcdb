"""OpenAI-compatible client for the generative reaction backend."""
from __future__ import annotations

import asyncio
import json
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import openai

logger = logging.getLogger(__name__)


class LLMGenerationError(RuntimeError):
    """Raised when the backend cannot produce a completion."""


class LLMNotEnabledError(LLMGenerationError):
    """Raised when the LLM client is disabled."""


class LLMTimeoutError(LLMGenerationError):
    """Raised when every attempt timed out."""


_MOCK_REPLY = {
    "happiness_change": 0,
    "economic_impact": 0,
    "support_likelihood": 50,
    "explanation": "[MOCK] No strong feelings either way.",
}


@dataclass
class LLMConfig:
    """Configuration for LLM client."""
    api_base: str = "http://localhost:11434/v1"  # Ollama's OpenAI-compatible endpoint
    api_key: str = "not-needed-for-local"
    model_name: str = "llama3.2:3b"
    temperature: float = 0.3
    max_tokens: int = 500
    timeout: int = 20  # per attempt; attempts plus backoff stay under the evaluation timeout
    retry_attempts: int = 2
    max_workers: int = 8
    mock_mode: bool = False
    enabled: bool = True
    retry_schedule: Optional[List[float]] = None

    @classmethod
    def from_env(cls) -> 'LLMConfig':
        """Load configuration from environment variables."""
        mock_mode = os.getenv("LLM_MODE", "").lower() == "mock"
        schedule_env = os.getenv("LLM_RETRY_SCHEDULE")
        retry_schedule: Optional[List[float]] = None
        if schedule_env:
            try:
                retry_schedule = [float(item.strip()) for item in schedule_env.split(",") if item.strip()]
            except ValueError:
                logger.warning("Invalid LLM_RETRY_SCHEDULE value: %s", schedule_env)
                retry_schedule = None

        return cls(
            api_base=os.getenv("LLM_API_BASE", "http://localhost:11434/v1"),
            api_key=os.getenv("LLM_API_KEY", "not-needed-for-local"),
            model_name=os.getenv("LLM_MODEL_NAME", "llama3.2:3b"),
            temperature=float(os.getenv("LLM_TEMPERATURE", "0.3")),
            max_tokens=int(os.getenv("LLM_MAX_TOKENS", "500")),
            timeout=int(os.getenv("LLM_TIMEOUT", "20")),
            retry_attempts=int(os.getenv("LLM_RETRY_ATTEMPTS", "2")),
            max_workers=int(os.getenv("LLM_MAX_WORKERS", "8")),
            mock_mode=mock_mode,
            enabled=os.getenv("LLM_ENABLED", "true").lower() not in ("0", "false", "no", "off"),
            retry_schedule=retry_schedule,
        )


class LLMClient:
    """Thin async wrapper over the OpenAI chat completions API."""

    def __init__(self, config: Optional[LLMConfig] = None):
        self.config = config or LLMConfig.from_env()
        self._executor = ThreadPoolExecutor(max_workers=max(1, self.config.max_workers))
        self._retry_schedule = self.config.retry_schedule or [0.5, 2.0, 5.0]
        self.enabled = self.config.enabled

        if self.config.mock_mode:
            self.client = None
            logger.info("LLM client initialised in mock mode")
            return

        self.client = openai.OpenAI(
            api_key=self.config.api_key,
            base_url=self.config.api_base,
            timeout=self.config.timeout,
            max_retries=0,
        )
        logger.info(
            "LLM client initialised (model=%s, base_url=%s)",
            self.config.model_name,
            self.config.api_base,
        )

    async def complete(self, prompt: str, *, system: Optional[str] = None) -> str:
        """Return the raw completion text for ``prompt``."""
        if self.config.mock_mode:
            return self._mock_completion(prompt)

        if not self.enabled or self.client is None:
            raise LLMNotEnabledError("LLM client is disabled")

        messages: List[Dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        response = await self._call_with_retry(messages)
        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as exc:
            raise LLMGenerationError(f"Malformed completion response: {exc}") from exc
        if not content or not content.strip():
            raise LLMGenerationError("Backend returned an empty completion")
        return content.strip()

    async def _call_with_retry(
        self,
        messages: List[Dict[str, str]],
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> Any:
        """Make API call with retry logic."""
        attempts = max(1, self.config.retry_attempts)
        loop = asyncio.get_running_loop()
        last_error: Optional[Exception] = None
        for attempt in range(attempts):
            try:
                return await loop.run_in_executor(
                    self._executor,
                    lambda: self.client.chat.completions.create(
                        model=self.config.model_name,
                        messages=messages,
                        temperature=self.config.temperature if temperature is None else temperature,
                        max_tokens=max_tokens or self.config.max_tokens,
                    ),
                )
            except openai.OpenAIError as e:
                last_error = e
                logger.warning(f"LLM API call attempt {attempt + 1} failed: {e}")
                if attempt < attempts - 1:
                    delay = self._retry_schedule[min(attempt, len(self._retry_schedule) - 1)]
                    await asyncio.sleep(delay)
        logger.error("All retry attempts exhausted for LLM call")
        if isinstance(last_error, openai.APITimeoutError):
            raise LLMTimeoutError(str(last_error)) from last_error
        raise LLMGenerationError(str(last_error)) from last_error

    async def health_check(self) -> bool:
        """Send a tiny prompt and report whether the backend answered."""
        if self.config.mock_mode:
            return True
        if not self.enabled or self.client is None:
            return False
        try:
            await self._call_with_retry(
                [{"role": "user", "content": "Hello"}],
                max_tokens=10,
                temperature=0.1,
            )
        except LLMGenerationError as exc:
            logger.error("LLM health check failed: %s", exc)
            return False
        logger.info("LLM health check passed")
        return True

    async def available_models(self) -> List[str]:
        if self.config.mock_mode:
            return [self.config.model_name]
        if self.client is None:
            return []
        loop = asyncio.get_running_loop()
        try:
            page = await loop.run_in_executor(self._executor, self.client.models.list)
        except openai.OpenAIError as exc:
            logger.error("Failed to list available models: %s", exc)
            return []
        return [model.id for model in page.data]

    def _mock_completion(self, prompt: str) -> str:
        """Return a deterministic, schema-valid reply in mock mode."""
        return json.dumps(_MOCK_REPLY)

    def close(self):
        """Clean up resources."""
        # Abandoned attempts must not hold up shutdown.
        self._executor.shutdown(wait=False, cancel_futures=True)
        if self.client is not None:
            self.client.close()


__all__ = [
    "LLMConfig",
    "LLMClient",
    "LLMGenerationError",
    "LLMNotEnabledError",
    "LLMTimeoutError",
]
