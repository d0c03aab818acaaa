"""
LLM analyzer adapters.

Supports:
- OpenAI (chat completions with JSON response format, fallback model)
- Anthropic (messages API)
- OpenAI-compatible endpoints (Deepseek / Mistral via an inference router,
  Ollama locally); each gets its own source label even when the same model
  is reachable through several transports
"""

import logging
from abc import abstractmethod
from typing import Any, Optional

from error_classifier import KIND_CONFIG, classify_analyzer_error
from exceptions import AnalyzerError
from schemas import ContractMetadata

from .base import Analyzer, Candidates
from .prompts import (
    ANALYSIS_SYSTEM_PROMPT,
    VALIDATION_SYSTEM_PROMPT,
    build_analysis_prompt,
    build_validation_prompt,
)

logger = logging.getLogger(__name__)


def sanitize_endpoint(endpoint: str) -> str:
    """Strip credentials and paths from an endpoint before logging it."""
    endpoint = str(endpoint)
    if "@" in endpoint:
        return endpoint.split("@")[-1]
    return endpoint.split("//")[-1].split("/")[0]


class LLMAnalyzer(Analyzer):
    """Prompt-building base for chat-style model backends.

    Subclasses implement ``complete(system_prompt, user_prompt, temperature)``.
    """

    supports_validation = True

    def __init__(
        self,
        source: str,
        model: str,
        client: Any = None,
        temperature: float = 0.1,
        validation_temperature: float = 0.2,
        max_tokens: int = 4000,
        max_code_size: int = 512000,
        validator_max_code_size: int = 25000,
        **kwargs,
    ):
        super().__init__(source, **kwargs)
        self.model = model
        self.client = client
        self.temperature = temperature
        self.validation_temperature = validation_temperature
        self.max_tokens = max_tokens
        self.max_code_size = max_code_size
        self.validator_max_code_size = validator_max_code_size

    @abstractmethod
    async def complete(self, system_prompt: str, user_prompt: str, temperature: float) -> str:
        ...

    async def request(
        self,
        source_code: str,
        metadata: ContractMetadata,
        prior_findings: Optional[Candidates] = None,
    ) -> str:
        if prior_findings is None:
            user_prompt = build_analysis_prompt(source_code, metadata, self.max_code_size)
            return await self.complete(ANALYSIS_SYSTEM_PROMPT, user_prompt, self.temperature)

        user_prompt = build_validation_prompt(source_code, metadata, prior_findings, self.validator_max_code_size)
        return await self.complete(VALIDATION_SYSTEM_PROMPT, user_prompt, self.validation_temperature)


class OpenAIAnalyzer(LLMAnalyzer):
    """OpenAI chat completions, with a fallback model for missing-model errors"""

    def __init__(
        self,
        api_key: str = "",
        model: str = "gpt-4-turbo",
        fallback_model: Optional[str] = "gpt-3.5-turbo",
        source: str = "openai",
        client: Any = None,
        **kwargs,
    ):
        if client is None:
            if not api_key:
                raise AnalyzerError("OPENAI_API_KEY not set", source=source, kind="config")
            from openai import AsyncOpenAI

            client = AsyncOpenAI(api_key=api_key)
        super().__init__(source, model, client=client, **kwargs)
        self.fallback_model = fallback_model

    async def _create(self, model: str, system_prompt: str, user_prompt: str, temperature: float) -> str:
        response = await self.client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
        )
        return response.choices[0].message.content or ""

    async def complete(self, system_prompt: str, user_prompt: str, temperature: float) -> str:
        try:
            return await self._create(self.model, system_prompt, user_prompt, temperature)
        except Exception as e:
            if not self.fallback_model or self.fallback_model == self.model:
                raise
            if classify_analyzer_error(e, self.source).kind != KIND_CONFIG:
                raise
            logger.warning(f"Model {self.model} unavailable, falling back to {self.fallback_model}")
            return await self._create(self.fallback_model, system_prompt, user_prompt, temperature)


class AnthropicAnalyzer(LLMAnalyzer):
    """Anthropic messages API"""

    def __init__(
        self,
        api_key: str = "",
        model: str = "claude-sonnet-4-5-20250929",
        source: str = "anthropic",
        client: Any = None,
        **kwargs,
    ):
        if client is None:
            if not api_key:
                raise AnalyzerError("ANTHROPIC_API_KEY not set", source=source, kind="config")
            from anthropic import AsyncAnthropic

            client = AsyncAnthropic(api_key=api_key)
        super().__init__(source, model, client=client, **kwargs)

    async def complete(self, system_prompt: str, user_prompt: str, temperature: float) -> str:
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
        return "".join(getattr(block, "text", "") for block in response.content)


class OpenAICompatibleAnalyzer(LLMAnalyzer):
    """Any endpoint speaking the OpenAI chat completions protocol.

    No ``response_format`` is sent: many compatible servers reject it, and
    the extractor copes with prose-wrapped JSON.
    """

    def __init__(
        self,
        source: str,
        model: str,
        base_url: str,
        api_key: str = "",
        client: Any = None,
        **kwargs,
    ):
        if client is None:
            if not base_url:
                raise AnalyzerError(f"no endpoint configured for {source}", source=source, kind="config")
            from openai import AsyncOpenAI

            logger.info(f"Using {source} endpoint: {sanitize_endpoint(base_url)}")
            client = AsyncOpenAI(base_url=base_url, api_key=api_key or source)
        super().__init__(source, model, client=client, **kwargs)
        self.base_url = base_url

    async def complete(self, system_prompt: str, user_prompt: str, temperature: float) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            max_tokens=self.max_tokens,
        )
        return response.choices[0].message.content or ""
