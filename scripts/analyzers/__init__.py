"""
Analyzer adapters

Every backend (LLM API, local model endpoint, static analysis tool) sits
behind the ``Analyzer`` contract and returns values, never exceptions.
"""

from .base import Analyzer, StaticResponseAnalyzer
from .llm_analyzers import AnthropicAnalyzer, LLMAnalyzer, OpenAIAnalyzer, OpenAICompatibleAnalyzer
from .prompts import TRUNCATION_MARKER, truncate_source
from .tool_analyzers import MythrilAnalyzer, SlitherAnalyzer, ToolAnalyzer

__all__ = [
    "Analyzer",
    "StaticResponseAnalyzer",
    "LLMAnalyzer",
    "OpenAIAnalyzer",
    "AnthropicAnalyzer",
    "OpenAICompatibleAnalyzer",
    "ToolAnalyzer",
    "SlitherAnalyzer",
    "MythrilAnalyzer",
    "TRUNCATION_MARKER",
    "truncate_source",
]
