#!/usr/bin/env python3
"""
Consensus Auditor Exceptions Module

Custom exception classes for the reconciliation engine.
These are raised inside a pipeline tier and converted into degradation
markers (AnalyzerFailure, degraded reports) at the tier boundary, so none of
them escape ``ContractAuditor.audit_contract``.
"""

__all__ = [
    "AuditError",
    "AnalyzerError",
    "AnalyzerTimeoutError",
    "ExtractionError",
    "ReconciliationError",
    "SourceUnavailableError",
    "ToolNotInstalledError",
]


class AuditError(Exception):
    """Base exception for all audit pipeline errors"""
    pass


class AnalyzerError(AuditError):
    """Raised when an analyzer backend call fails"""

    def __init__(self, message: str, source: str = "", kind: str = "transport"):
        super().__init__(message)
        self.source = source
        self.kind = kind


class AnalyzerTimeoutError(AnalyzerError):
    """Raised when an analyzer exceeds its per-call timeout"""

    def __init__(self, message: str, source: str = ""):
        super().__init__(message, source=source, kind="timeout")


class ToolNotInstalledError(AnalyzerError):
    """Raised when a static analysis binary (slither, myth) is missing"""

    def __init__(self, message: str, source: str = ""):
        super().__init__(message, source=source, kind="unavailable")


class ExtractionError(AuditError):
    """Raised when raw analyzer output cannot be turned into findings"""
    pass


class ReconciliationError(AuditError):
    """Raised when the validator pass cannot produce a merged finding set"""
    pass


class SourceUnavailableError(AuditError):
    """Raised when contract source is missing, empty, or unverified"""
    pass
