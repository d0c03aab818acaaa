#!/usr/bin/env python3
"""
Analyzer Provider Management Module
Centralized construction of every analyzer backend from the flat config.

Supports:
- OpenAI (GPT-4, with fallback model)
- Anthropic (Claude)
- Deepseek / Mistral (OpenAI-compatible inference router)
- Ollama (local, self-hosted)
- Slither / Mythril (static analysis tools)

Features:
- Analyzers built in configuration order; one that cannot be built is
  logged and skipped instead of failing the run
- Validator resolved from the configured source, reusing the analyzer
  instance when that source is also analyzing
- Endpoint sanitization for logs
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from analyzers import (
    Analyzer,
    AnthropicAnalyzer,
    MythrilAnalyzer,
    OpenAIAnalyzer,
    OpenAICompatibleAnalyzer,
    SlitherAnalyzer,
)
from analyzers.llm_analyzers import sanitize_endpoint
from config_loader import ANALYZER_NAMES, get_default_config
from exceptions import AnalyzerError
from response_extractor import ResponseExtractor

logger = logging.getLogger(__name__)


class AnalyzerManager:
    """Build analyzer adapters and the validator from configuration"""

    DEFAULT_MODELS = {
        "openai": "gpt-4-turbo",
        "anthropic": "claude-sonnet-4-5-20250929",
        "deepseek": "deepseek-ai/deepseek-coder-33b-instruct",
        "mistral": "mistralai/Mistral-7B-Instruct-v0.2",
        "ollama": "llama3.2:3b",
    }

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """Initialize the manager

        Args:
            config: Flat configuration dict from ``build_unified_config``
        """
        self.config = get_default_config()
        self.config.update(config or {})
        self.extractor = ResponseExtractor(narrative_max_chars=self.config["narrative_max_chars"])
        self._built: Dict[str, Analyzer] = {}

    def enabled_sources(self) -> List[str]:
        """Return enabled analyzer names in configuration order"""
        return [name for name in ANALYZER_NAMES if self.config.get(f"enable_{name}")]

    def get_model_name(self, name: str) -> str:
        return self.config.get(f"{name}_model") or self.DEFAULT_MODELS[name]

    def _llm_kwargs(self) -> Dict[str, Any]:
        return {
            "timeout": float(self.config["analyzer_timeout"]),
            "retry_max_attempts": int(self.config["retry_max_attempts"]),
            "extractor": self.extractor,
            "temperature": float(self.config["temperature"]),
            "validation_temperature": float(self.config["validator_temperature"]),
            "max_tokens": int(self.config["max_tokens"]),
            "max_code_size": int(self.config["max_code_size"]),
            "validator_max_code_size": int(self.config["validator_max_code_size"]),
        }

    def _create(self, name: str) -> Analyzer:
        """Create one analyzer adapter

        Args:
            name: Analyzer name from ``ANALYZER_NAMES``

        Returns:
            Analyzer instance

        Raises:
            AnalyzerError: If credentials or endpoints are missing
            ValueError: If the name is unknown
        """
        if name == "openai":
            return OpenAIAnalyzer(
                api_key=self.config.get("openai_api_key"),
                model=self.get_model_name(name),
                fallback_model=self.config.get("openai_fallback_model") or None,
                **self._llm_kwargs(),
            )

        if name == "anthropic":
            return AnthropicAnalyzer(
                api_key=self.config.get("anthropic_api_key"),
                model=self.get_model_name(name),
                **self._llm_kwargs(),
            )

        if name in ("deepseek", "mistral"):
            api_key = self.config.get("huggingface_api_key")
            if not api_key:
                raise AnalyzerError("HUGGINGFACE_API_KEY not set", source=name, kind="config")
            return OpenAICompatibleAnalyzer(
                source=name,
                model=self.get_model_name(name),
                base_url=self.config.get(f"{name}_endpoint"),
                api_key=api_key,
                **self._llm_kwargs(),
            )

        if name == "ollama":
            endpoint = str(self.config.get("ollama_endpoint") or "http://localhost:11434").rstrip("/")
            base_url = endpoint if endpoint.endswith("/v1") else f"{endpoint}/v1"
            return OpenAICompatibleAnalyzer(
                source=name,
                model=self.get_model_name(name),
                base_url=base_url,
                api_key="ollama",
                **self._llm_kwargs(),
            )

        tool_kwargs = {
            "timeout": float(self.config["tool_timeout"]),
            "retry_max_attempts": 1,
            "extractor": self.extractor,
        }
        if name == "slither":
            return SlitherAnalyzer(**tool_kwargs)
        if name == "mythril":
            return MythrilAnalyzer(execution_timeout=int(self.config["mythril_execution_timeout"]), **tool_kwargs)

        safe_name = str(name).split("/")[-1] if name else "unknown"
        raise ValueError(f"Unknown analyzer: {safe_name}")

    def get_analyzer(self, name: str) -> Optional[Analyzer]:
        """Return a cached analyzer for ``name``, or None if it cannot be built"""
        if name in self._built:
            return self._built[name]
        try:
            analyzer = self._create(name)
        except Exception as e:
            logger.warning(f"Skipping analyzer {name}: {type(e).__name__}: {e}")
            return None
        self._built[name] = analyzer
        return analyzer

    def build_analyzers(self, multi_source: bool = True) -> List[Analyzer]:
        """Build every enabled analyzer (only the first one in single-source mode)"""
        analyzers = []
        for name in self.enabled_sources():
            analyzer = self.get_analyzer(name)
            if analyzer is None:
                continue
            analyzers.append(analyzer)
            if not multi_source:
                break
        logger.info(f"Analyzers ready: {[a.source for a in analyzers] or 'none (pattern scanner only)'}")
        return analyzers

    def build_validator(self) -> Optional[Analyzer]:
        """Return the validator adapter, or None when validation is off or unavailable"""
        if not self.config.get("use_validator"):
            return None
        name = self.config.get("validator_source", "openai")
        if name not in self.DEFAULT_MODELS:
            logger.warning(f"validator_source {name!r} is not an LLM analyzer; validation disabled")
            return None
        validator = self.get_analyzer(name)
        if validator is not None and name == "ollama":
            logger.info(f"Validator uses Ollama endpoint: {sanitize_endpoint(self.config.get('ollama_endpoint', ''))}")
        return validator

    def build(self, multi_source: bool = True) -> Tuple[List[Analyzer], Optional[Analyzer]]:
        analyzers = self.build_analyzers(multi_source=multi_source)
        validator = self.build_validator() if multi_source else None
        return analyzers, validator
