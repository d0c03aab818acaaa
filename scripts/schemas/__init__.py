"""
Pydantic schemas for the reconciliation pipeline

This package contains the immutable models for all data flowing between
analyzers, the extractor, the reconciler and the caller. Schemas normalize
severities and risk levels at the boundary so later stages only ever see the
closed vocabularies.
"""

from .audit import (
    IMPACT_PLACEHOLDER,
    PATTERN_SCANNER_SOURCE,
    RECOMMENDATION_PLACEHOLDER,
    AnalysisResult,
    AnalyzerFailure,
    AnalyzerOutcome,
    AuditOptions,
    ConsolidatedReport,
    ContractMetadata,
    ContractSource,
    FallbackTier,
    Finding,
    FindingVerdict,
    RiskLevel,
    Severity,
    ValidationDecision,
    ValidationVerdict,
)

__all__ = [
    # Vocabularies
    "Severity",
    "RiskLevel",
    "FallbackTier",
    "ValidationDecision",
    # Findings and results
    "Finding",
    "AnalysisResult",
    "AnalyzerFailure",
    "AnalyzerOutcome",
    # Validator
    "FindingVerdict",
    "ValidationVerdict",
    # Request / response
    "ContractMetadata",
    "ContractSource",
    "AuditOptions",
    "ConsolidatedReport",
    # Constants
    "IMPACT_PLACEHOLDER",
    "RECOMMENDATION_PLACEHOLDER",
    "PATTERN_SCANNER_SOURCE",
]
