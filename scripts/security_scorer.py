#!/usr/bin/env python3
"""
Security Scorer Module

Deterministic 0-100 security score and risk bucket for a finding set.

The score starts at 100 and loses a fixed number of points per surviving
finding. When analyzers reported their own scores, the deduction score is
averaged with the mean of those self-reported scores. The result is rounded
half-up and clamped to [0, 100] only at the end, so a heavy deduction can
still pull a high self-reported average down.
"""

import math
from typing import Dict, Iterable, Optional, Sequence, Tuple

from schemas import Finding, RiskLevel, Severity

__all__ = [
    "SEVERITY_DEDUCTIONS",
    "RISK_THRESHOLDS",
    "calculate_security_score",
    "count_by_severity",
    "risk_level_for",
    "score",
]

SEVERITY_DEDUCTIONS: Dict[Severity, int] = {
    Severity.CRITICAL: 20,
    Severity.HIGH: 10,
    Severity.MEDIUM: 5,
    Severity.LOW: 2,
    Severity.INFO: 0,
}

# (minimum score, level), checked in order
RISK_THRESHOLDS: Tuple[Tuple[int, RiskLevel], ...] = (
    (90, RiskLevel.SAFE),
    (75, RiskLevel.LOW_RISK),
    (60, RiskLevel.MEDIUM_RISK),
)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_security_score(
    findings: Iterable[Finding],
    self_reported_scores: Optional[Sequence[int]] = None,
) -> int:
    """Compute the 0-100 score for ``findings``.

    Args:
        findings: Surviving (post-reconciliation) findings
        self_reported_scores: Scores reported by successful analyzers, may be empty

    Returns:
        Integer score in [0, 100]
    """
    raw = 100 - sum(SEVERITY_DEDUCTIONS[f.severity] for f in findings)

    scores = [s for s in (self_reported_scores or []) if s is not None]
    if scores:
        ai_average = sum(scores) / len(scores)
        raw = _round_half_up((raw + ai_average) / 2)

    return max(0, min(100, int(raw)))


def risk_level_for(security_score: int) -> RiskLevel:
    """Map a score to its risk bucket."""
    for threshold, level in RISK_THRESHOLDS:
        if security_score >= threshold:
            return level
    return RiskLevel.HIGH_RISK


def score(
    findings: Iterable[Finding],
    self_reported_scores: Optional[Sequence[int]] = None,
) -> Tuple[int, RiskLevel]:
    """Return ``(security_score, risk_level)`` for a finding set."""
    value = calculate_security_score(findings, self_reported_scores)
    return value, risk_level_for(value)


def count_by_severity(findings: Iterable[Finding]) -> Dict[str, int]:
    counts = {severity.value: 0 for severity in Severity}
    for finding in findings:
        counts[finding.severity.value] += 1
    return counts
