#!/usr/bin/env python3
"""
Fallback Controller Module

Builds the degraded reports used whenever full reconciliation cannot run.

Tiers, most to least complete:
  1. full              - validator reconciliation (built by the Reconciler)
  2. single_source     - best successful analyzer, taken as-is
  3. pattern_only      - pattern scanner only, no AI analysis available
  -  source_unavailable - no usable contract source; one INFO finding, score 0
  -  total_failure     - nothing could run; error carried in the report

Tier selection is deterministic: the same inputs always produce the same
report.
"""

import logging
from typing import Dict, List, Optional, Sequence

from finding_matcher import FindingMatcher
from schemas import (
    PATTERN_SCANNER_SOURCE,
    AnalysisResult,
    ConsolidatedReport,
    ContractMetadata,
    FallbackTier,
    Finding,
    RiskLevel,
    Severity,
)
from security_scorer import score

__all__ = ["FallbackController", "NO_AI_ANALYSIS_MESSAGE"]

logger = logging.getLogger(__name__)

NO_AI_ANALYSIS_MESSAGE = "No AI analysis was available; this report is based on static pattern analysis only."


def failed_sources(results: Sequence[AnalysisResult]) -> Dict[str, str]:
    return {r.source: r.error for r in results if r.error is not None}


class FallbackController:
    """Build reports for every degradation tier"""

    def __init__(self, matcher: Optional[FindingMatcher] = None):
        self.matcher = matcher or FindingMatcher()

    @staticmethod
    def select_best(successes: Sequence[AnalysisResult]) -> Optional[AnalysisResult]:
        """Highest self-reported score wins; analyzers beat the scanner; ties keep configuration order."""
        if not successes:
            return None
        ranked = sorted(
            enumerate(successes),
            key=lambda item: (
                item[1].source == PATTERN_SCANNER_SOURCE,
                -(item[1].security_score if item[1].security_score is not None else -1),
                item[0],
            ),
        )
        return ranked[0][1]

    def single_source(
        self,
        results: Sequence[AnalysisResult],
        reason: str,
        metadata: Optional[ContractMetadata] = None,
    ) -> ConsolidatedReport:
        """Tier 2: use the best single successful analyzer, consensus 1 per finding."""
        successes = [r for r in results if r.succeeded and r.source != PATTERN_SCANNER_SOURCE]
        best = self.select_best(successes)
        if best is None:
            return self.pattern_only(results, metadata)

        findings = self.matcher.deduplicate(
            [f.model_copy(update={"consensus_count": 1, "source_tag": best.source}) for f in best.findings]
        )
        self_scores = [best.security_score] if best.security_score is not None else []
        security_score, risk_level = score(findings, self_scores)

        scanner = next((r for r in results if r.source == PATTERN_SCANNER_SOURCE), None)
        logger.warning(f"Reconciliation did not occur ({reason}); using results from {best.source}")
        return ConsolidatedReport(
            contract_name=metadata.name if metadata else "Unknown",
            overview=best.overview or (scanner.overview if scanner else ""),
            contract_type=best.contract_type or (scanner.contract_type if scanner else ""),
            key_features=best.key_features or (scanner.key_features if scanner else ()),
            analysis_discussion=f"Reconciliation did not occur ({reason}); using results from {best.source}.",
            findings=tuple(findings),
            security_score=security_score,
            risk_level=risk_level,
            degraded=True,
            tier=FallbackTier.SINGLE_SOURCE,
            sources_used=(best.source,),
            failed_sources=failed_sources(results),
        )

    def pattern_only(
        self,
        results: Sequence[AnalysisResult],
        metadata: Optional[ContractMetadata] = None,
    ) -> ConsolidatedReport:
        """Tier 3: pattern scanner only."""
        scanner = next((r for r in results if r.source == PATTERN_SCANNER_SOURCE), None)
        findings: List[Finding] = list(scanner.findings) if scanner else []
        security_score, risk_level = score(findings)

        logger.warning("No AI analysis available; reporting pattern scanner results only")
        return ConsolidatedReport(
            contract_name=metadata.name if metadata else "Unknown",
            overview=scanner.overview if scanner else "",
            contract_type=scanner.contract_type if scanner else "",
            key_features=scanner.key_features if scanner else (),
            analysis_discussion=NO_AI_ANALYSIS_MESSAGE,
            findings=tuple(findings),
            security_score=security_score,
            risk_level=risk_level,
            degraded=True,
            tier=FallbackTier.PATTERN_ONLY,
            sources_used=(PATTERN_SCANNER_SOURCE,) if scanner else (),
            failed_sources=failed_sources(results),
        )

    def source_unavailable(self, metadata: ContractMetadata, reason: str) -> ConsolidatedReport:
        """No usable source: a single INFO finding and a score of 0."""
        location = f"{metadata.address} on {metadata.network}" if metadata.address else "the requested contract"
        return ConsolidatedReport(
            contract_name=metadata.name,
            overview="Source code unavailable for analysis.",
            contract_type="Unknown",
            analysis_discussion=f"The contract could not be analyzed: {reason}.",
            findings=(
                Finding(
                    title="Source Code Unavailable",
                    description=f"Verified source code for {location} could not be obtained ({reason}).",
                    severity=Severity.INFO,
                    impact="The contract could not be audited.",
                    recommendation="Verify the contract source on a block explorer and retry.",
                    source_tag=PATTERN_SCANNER_SOURCE,
                ),
            ),
            security_score=0,
            risk_level=RiskLevel.HIGH_RISK,
            degraded=True,
            tier=FallbackTier.SOURCE_UNAVAILABLE,
        )

    def total_failure(self, error: str, metadata: Optional[ContractMetadata] = None) -> ConsolidatedReport:
        """Nothing could run; the error travels in the report instead of an exception."""
        logger.error(f"Audit failed: {error}")
        return ConsolidatedReport(
            contract_name=metadata.name if metadata else "Unknown",
            overview="Audit could not be performed.",
            analysis_discussion=f"Audit failed: {error}",
            security_score=0,
            risk_level=RiskLevel.HIGH_RISK,
            degraded=True,
            tier=FallbackTier.TOTAL_FAILURE,
            error=error,
        )
