#!/usr/bin/env python3
"""
Reconciler Module

Merge per-source analysis results into one consensus report.

Flow:
  1. No successful analyzer               -> pattern-only tier
  2. Validator available                  -> one validator call over every
                                             numbered finding (F1..Fn)
  3. Apply decisions                      -> CONFIRM keeps, MODIFY replaces,
                                             DISPUTE drops, missed findings
                                             are appended
  4. Validator off or failing             -> best single source tier
  5. Collapse near-duplicates             -> one finding per issue, with
                                             consensus_count = distinct
                                             supporting sources; reviewed
                                             members lead each merge, and a
                                             DISPUTE also drops unreviewed
                                             duplicates of the same issue

``reconcile`` never raises.
"""

import asyncio
import logging
from collections import Counter
from typing import Dict, List, Optional, Sequence, Tuple

from exceptions import ReconciliationError
from fallback_controller import FallbackController, failed_sources
from finding_matcher import FindingMatcher, merge_source_tags, normalize_text
from schemas import (
    PATTERN_SCANNER_SOURCE,
    AnalysisResult,
    AnalyzerFailure,
    ConsolidatedReport,
    ContractMetadata,
    FallbackTier,
    Finding,
    FindingVerdict,
    ValidationDecision,
    ValidationVerdict,
)
from security_scorer import score

__all__ = ["Reconciler"]


# Merge priority of a finding after the validator pass; the highest
# priority members of a duplicate cluster decide its text and severity
UNREVIEWED = 0
DISPUTED = 1
ENDORSED = 2
MODIFIED = 3

logger = logging.getLogger(__name__)


def _with_sources(finding: Finding, sources: Sequence[str]) -> Finding:
    return finding.model_copy(update={"source_tag": ", ".join(sources), "consensus_count": max(1, len(sources))})


class Reconciler:
    """Reconcile analyzer results, optionally through a validator pass

    Args:
        validator: Analyzer used as judge, or None to skip validation
        matcher: Finding matcher (similarity threshold lives here)
        fallback: Builder for degraded tiers
        metrics: Optional AuditRunMetrics
    """

    def __init__(self, validator=None, matcher: Optional[FindingMatcher] = None, fallback=None, metrics=None):
        self.validator = validator
        self.matcher = matcher or FindingMatcher()
        self.fallback = fallback or FallbackController(self.matcher)
        self.metrics = metrics

    def _record_validator(self, status: str) -> None:
        if self.metrics is not None:
            self.metrics.record_validator(self.validator.source if self.validator else "", status)

    async def reconcile(
        self,
        results: Sequence[AnalysisResult],
        source_code: str,
        metadata: Optional[ContractMetadata] = None,
        use_validator: bool = True,
        timeout: Optional[float] = None,
    ) -> ConsolidatedReport:
        """Produce the consolidated report for ``results``

        Args:
            results: Orchestrator output (scanner result first)
            source_code: Contract source, passed to the validator
            metadata: Contract metadata
            use_validator: Per-request switch; False forces the single-source tier
            timeout: Seconds the validator call may take; on expiry the
                single-source tier is used. None waits for the validator's
                own timeout

        Returns:
            ConsolidatedReport (degraded tiers included); never raises
        """
        metadata = metadata or ContractMetadata()
        try:
            successes = [r for r in results if r.succeeded and r.source != PATTERN_SCANNER_SOURCE]
            if not successes:
                self._record_validator("skipped")
                return self.fallback.pattern_only(results, metadata)

            if self.validator is None or not use_validator:
                self._record_validator("skipped")
                return self.fallback.single_source(results, "validator disabled", metadata)

            try:
                report = await self._reconcile_with_validator(results, successes, source_code, metadata, timeout)
                self._record_validator("ok")
                return report
            except Exception as e:
                logger.warning(f"Validator reconciliation failed: {type(e).__name__}: {e}")
                self._record_validator("failed")
                return self.fallback.single_source(results, f"validator failed: {e}", metadata)
        except Exception as e:
            logger.error(f"Reconciliation failed unexpectedly: {type(e).__name__}: {e}")
            return self.fallback.total_failure(f"reconciliation failed: {e}", metadata)

    # ------------------------------------------------------------------
    # Validator tier
    # ------------------------------------------------------------------

    @staticmethod
    def _candidates(results: Sequence[AnalysisResult]) -> List[Tuple[str, Finding]]:
        findings = [f for r in results if r.succeeded for f in r.findings]
        return [(f"F{index}", finding) for index, finding in enumerate(findings, start=1)]

    def _assign(
        self, verdict: ValidationVerdict, candidates: Sequence[Tuple[str, Finding]]
    ) -> Dict[str, FindingVerdict]:
        """Map each validator decision to a candidate id (by id, else by title)."""
        ids = {fid.upper(): fid for fid, _ in candidates}
        decisions: Dict[str, FindingVerdict] = {}
        for item in verdict.verdicts:
            key = item.finding_id.strip().upper()
            if key.isdigit():
                key = f"F{key}"
            fid = ids.get(key)
            if fid is None and item.original_title:
                named = Finding(title=item.original_title)
                title = normalize_text(item.original_title)
                fid = next(
                    (cid for cid, f in candidates if cid not in decisions and normalize_text(f.title) == title),
                    None,
                ) or next(
                    (cid for cid, f in candidates if cid not in decisions and self.matcher.matches(named, f)),
                    None,
                )
            if fid is None:
                logger.debug(f"Validator decision for unknown finding {item.finding_id or item.original_title!r}")
                continue
            decisions.setdefault(fid, item)
        return decisions

    async def _reconcile_with_validator(
        self,
        results: Sequence[AnalysisResult],
        successes: Sequence[AnalysisResult],
        source_code: str,
        metadata: ContractMetadata,
        timeout: Optional[float] = None,
    ) -> ConsolidatedReport:
        candidates = self._candidates(results)
        if timeout is not None and timeout <= 0:
            raise ReconciliationError("timeout: audit deadline spent before validation")
        try:
            verdict = await asyncio.wait_for(self.validator.validate(source_code, metadata, candidates), timeout)
        except asyncio.TimeoutError:
            raise ReconciliationError(f"timeout: audit deadline reached after {timeout:.1f}s of validation") from None
        if isinstance(verdict, AnalyzerFailure):
            raise ReconciliationError(f"{verdict.kind}: {verdict.reason}")

        validator_source = verdict.source
        decisions = self._assign(verdict, candidates)
        tally: Counter = Counter()
        judged: List[Finding] = []
        priorities: List[int] = []

        for fid, finding in candidates:
            decision = decisions.get(fid)
            if decision is None:
                tally["unreviewed"] += 1
                judged.append(finding)
                priorities.append(UNREVIEWED)
            elif decision.decision is ValidationDecision.DISPUTE:
                tally["disputed"] += 1
                judged.append(finding)
                priorities.append(DISPUTED)
            elif decision.decision is ValidationDecision.MODIFY and decision.modified_finding is not None:
                tally["modified"] += 1
                sources = merge_source_tags([finding.source_tag, validator_source])
                judged.append(_with_sources(decision.modified_finding, sources))
                priorities.append(MODIFIED)
            else:
                tally["confirmed"] += 1
                judged.append(_with_sources(finding, merge_source_tags([finding.source_tag, validator_source])))
                priorities.append(ENDORSED)

        for missed in verdict.missed_findings:
            tally["added"] += 1
            judged.append(_with_sources(missed, [validator_source]))
            priorities.append(ENDORSED)

        all_candidates = [finding for _, finding in candidates]
        findings = []
        for cluster in self.matcher.cluster(judged, priorities):
            if max(cluster.priorities) == DISPUTED:
                # every reviewed member was disputed; unreviewed duplicates go with them
                continue
            merged = cluster.merged()
            findings.append(_with_sources(merged, self.matcher.supporting_sources(merged, all_candidates)))
        order = sorted(
            enumerate(findings), key=lambda item: (item[1].severity.rank, -item[1].consensus_count, item[0])
        )
        findings = [f for _, f in order]

        self_scores = [r.security_score for r in successes if r.security_score is not None]
        if verdict.security_score is not None:
            self_scores.append(verdict.security_score)
        security_score, risk_level = score(findings, self_scores)

        scanner = next((r for r in results if r.source == PATTERN_SCANNER_SOURCE), None)
        best = self.fallback.select_best(successes)
        key_features = verdict.key_features or tuple(
            dict.fromkeys(best.key_features + (scanner.key_features if scanner else ()))
        )

        return ConsolidatedReport(
            contract_name=metadata.name,
            overview=verdict.overview or best.overview or (scanner.overview if scanner else ""),
            contract_type=verdict.contract_type or best.contract_type or (scanner.contract_type if scanner else ""),
            key_features=key_features,
            analysis_discussion=self._discussion(verdict, successes, tally, findings),
            findings=tuple(findings),
            security_score=security_score,
            risk_level=risk_level,
            degraded=False,
            tier=FallbackTier.FULL,
            sources_used=tuple(merge_source_tags([r.source for r in results if r.succeeded] + [validator_source])),
            failed_sources=failed_sources(results),
        )

    @staticmethod
    def _discussion(
        verdict: ValidationVerdict,
        successes: Sequence[AnalysisResult],
        tally: Counter,
        findings: Sequence[Finding],
    ) -> str:
        parts = []
        if verdict.analysis_discussion:
            parts.append(verdict.analysis_discussion)
        parts.append(
            f"{verdict.source} reviewed findings from {len(successes)} AI source(s): "
            f"{tally['confirmed']} confirmed, {tally['modified']} modified, {tally['disputed']} disputed, "
            f"{tally['added']} added, {tally['unreviewed']} not reviewed."
        )
        shared = [f for f in findings if f.consensus_count > 1]
        if shared:
            ranked = sorted(shared, key=lambda f: -f.consensus_count)
            parts.append(
                "Reported by multiple sources: "
                + "; ".join(f"{f.title} ({f.consensus_count} sources)" for f in ranked)
                + "."
            )
        return " ".join(parts)
