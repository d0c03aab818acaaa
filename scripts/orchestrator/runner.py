"""
Analysis Orchestrator - Fan out one source text to every analyzer.

Features:
- Pattern scanner runs inline first and always contributes a result
- Analyzers run concurrently as asyncio tasks under one shared deadline
- Analyzers still running at the deadline are cancelled and recorded as
  timeout failures; their late results are never used
- Duplicate source labels are dropped (first configured wins)
- Never raises: every outcome is an ``AnalysisResult``
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional, Sequence

from analyzers import Analyzer
from pattern_scanner import PatternScanner
from schemas import AnalysisResult, AnalyzerFailure, ContractMetadata, PATTERN_SCANNER_SOURCE

logger = logging.getLogger(__name__)


class AnalysisOrchestrator:
    """Run the pattern scanner and all analyzers for one source text.

    Parameters
    ----------
    scanner : PatternScanner
        Static scanner run synchronously before any analyzer.
    metrics : AuditRunMetrics, optional
        Per-run telemetry; per-analyzer outcomes are recorded when given.

    Example
    -------
    ::

        orchestrator = AnalysisOrchestrator()
        results = await orchestrator.run(source, metadata, analyzers, deadline=90.0)
    """

    def __init__(self, scanner: Optional[PatternScanner] = None, metrics=None):
        self.scanner = scanner or PatternScanner()
        self.metrics = metrics

    def _scan(self, source_code: str) -> AnalysisResult:
        try:
            return self.scanner.scan(source_code)
        except Exception as e:
            logger.error(f"Pattern scanner failed unexpectedly: {type(e).__name__}: {e}")
            return AnalysisResult(source=PATTERN_SCANNER_SOURCE, overview="Static pattern analysis unavailable.")

    @staticmethod
    def _unique(analyzers: Sequence[Analyzer]) -> List[Analyzer]:
        seen = set()
        unique = []
        for analyzer in analyzers:
            if analyzer.source in seen or analyzer.source == PATTERN_SCANNER_SOURCE:
                logger.warning(f"Ignoring duplicate analyzer source {analyzer.source!r}")
                continue
            seen.add(analyzer.source)
            unique.append(analyzer)
        return unique

    def _record(self, outcome) -> None:
        if self.metrics is None:
            return
        if isinstance(outcome, AnalyzerFailure):
            self.metrics.record_analyzer(outcome.source, "failed", outcome.duration_seconds, outcome.kind)
        else:
            self.metrics.record_analyzer(outcome.source, "ok", outcome.duration_seconds)

    async def run(
        self,
        source_code: str,
        metadata: ContractMetadata,
        analyzers: Sequence[Analyzer],
        deadline: Optional[float] = None,
    ) -> List[AnalysisResult]:
        """Analyze ``source_code`` with every analyzer.

        Parameters
        ----------
        deadline : float, optional
            Seconds the analyzers may run in total. ``None`` waits for all.

        Returns
        -------
        list[AnalysisResult]
            The scanner result first, then one result per analyzer in
            configuration order (failed analyzers carry ``error``).
        """
        results = [self._scan(source_code)]
        unique = self._unique(analyzers)
        if not unique:
            return results

        start = time.monotonic()
        tasks = [
            (asyncio.ensure_future(analyzer.analyze(source_code, metadata)), analyzer)
            for analyzer in unique
        ]
        done, pending = await asyncio.wait([task for task, _ in tasks], timeout=deadline)
        for task in pending:
            task.cancel()

        if pending:
            logger.warning(
                "Deadline of %.1fs reached; abandoning %s",
                deadline or 0.0,
                [analyzer.source for task, analyzer in tasks if task in pending],
            )

        for task, analyzer in tasks:
            if task in done:
                try:
                    outcome = task.result()
                except Exception as e:
                    # adapters return values; an exception here is a contract breach
                    logger.error(f"Analyzer {analyzer.source} raised {type(e).__name__}: {e}")
                    outcome = AnalyzerFailure(source=analyzer.source, reason=str(e) or type(e).__name__, kind="permanent")
            else:
                outcome = AnalyzerFailure(
                    source=analyzer.source,
                    reason=f"deadline of {deadline:.1f}s exceeded",
                    kind="timeout",
                    duration_seconds=time.monotonic() - start,
                )

            self._record(outcome)
            results.append(outcome.to_result() if isinstance(outcome, AnalyzerFailure) else outcome)

        succeeded = sum(1 for r in results[1:] if r.succeeded)
        logger.info(f"Analyzers finished: {succeeded}/{len(unique)} succeeded")
        return results
