"""
Orchestration layer: analyzer construction, concurrent fan-out under a
shared deadline, and the in-flight request registry.
"""

from .inflight import InFlightRegistry, request_key
from .llm_manager import AnalyzerManager
from .runner import AnalysisOrchestrator

__all__ = ["AnalysisOrchestrator", "AnalyzerManager", "InFlightRegistry", "request_key"]
