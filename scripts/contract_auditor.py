#!/usr/bin/env python3
"""
Contract Auditor - caller-facing entry point

Wires the stages together for one audit request:

    SourceProvider -> PatternScanner + analyzers (AnalysisOrchestrator)
                   -> Reconciler (validator / fallback tiers)
                   -> ConsolidatedReport -> ReportSink

Concurrent requests for the same (address, network, mode) share one run
through the InFlightRegistry. ``audit_contract`` and ``audit_source`` never
raise; every failure is expressed as a degraded report.
"""

import asyncio
import logging
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple, runtime_checkable

from config_loader import get_default_config
from exceptions import SourceUnavailableError
from fallback_controller import FallbackController
from finding_matcher import FindingMatcher
from orchestrator.inflight import InFlightRegistry, request_key
from orchestrator.llm_manager import AnalyzerManager
from orchestrator.runner import AnalysisOrchestrator
from pattern_scanner import PatternScanner
from reconciler import Reconciler
from run_metrics import AuditRunMetrics
from schemas import AuditOptions, ConsolidatedReport, ContractMetadata, ContractSource

__all__ = [
    "ContractAuditor",
    "FileSourceProvider",
    "NullReportSink",
    "ReportSink",
    "SourceProvider",
    "StaticSourceProvider",
]

logger = logging.getLogger(__name__)

_CONTRACT_NAME_RE = re.compile(r"^\s*(?:abstract\s+)?contract\s+([A-Za-z_][A-Za-z0-9_]*)", re.MULTILINE)


# ---------------------------------------------------------------------------
# External interfaces
# ---------------------------------------------------------------------------


@runtime_checkable
class SourceProvider(Protocol):
    """Fetches verified contract source for an address."""

    async def get_source(self, address: str, network: str) -> ContractSource:
        ...


@runtime_checkable
class ReportSink(Protocol):
    """Receives finished reports with their run metadata."""

    async def save(self, report: ConsolidatedReport, run_metadata: Dict[str, Any]) -> None:
        ...


class StaticSourceProvider:
    """In-memory provider keyed by address (and optionally network)."""

    def __init__(self, sources: Optional[Mapping[Any, ContractSource]] = None):
        self._sources: Dict[Any, ContractSource] = {}
        for key, source in (sources or {}).items():
            if isinstance(key, tuple):
                key = (key[0].lower(), key[1].lower())
            else:
                key = str(key).lower()
            self._sources[key] = source

    async def get_source(self, address: str, network: str) -> ContractSource:
        address = (address or "").lower()
        found = self._sources.get((address, (network or "").lower())) or self._sources.get(address)
        if found is None:
            return ContractSource(verified=False)
        return found


def contract_name_from_source(source_code: str, default: str = "Unknown") -> str:
    """Last declared contract in the file, which is usually the deployed one."""
    names = _CONTRACT_NAME_RE.findall(source_code or "")
    return names[-1] if names else default


class FileSourceProvider:
    """Serves one local ``.sol`` file for any address."""

    def __init__(self, path, compiler_version: str = "Unknown"):
        self.path = Path(path)
        self.compiler_version = compiler_version

    async def get_source(self, address: str, network: str) -> ContractSource:
        try:
            source_code = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise SourceUnavailableError(f"cannot read {self.path.name}: {e.strerror or e}") from e
        return ContractSource(
            source_code=source_code,
            contract_name=contract_name_from_source(source_code, default=self.path.stem),
            compiler_version=self.compiler_version,
        )


class NullReportSink:
    async def save(self, report: ConsolidatedReport, run_metadata: Dict[str, Any]) -> None:
        logger.debug(f"Report for {report.contract_name} not persisted (null sink)")


# ---------------------------------------------------------------------------
# Auditor
# ---------------------------------------------------------------------------


class ContractAuditor:
    """Run multi-source audits with consensus reconciliation

    Args:
        config: Flat config dict (see ``config_loader.build_unified_config``)
        source_provider: SourceProvider used by ``audit_contract``
        report_sink: ReportSink receiving every finished report
        manager: AnalyzerManager; built from ``config`` when omitted
        analyzers: Explicit analyzer list, bypassing the manager
        validator: Explicit validator, used together with ``analyzers``
        scanner: PatternScanner override
        registry: InFlightRegistry override (shared between auditors if given)
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        source_provider: Optional[SourceProvider] = None,
        report_sink: Optional[ReportSink] = None,
        manager: Optional[AnalyzerManager] = None,
        analyzers: Optional[List[Any]] = None,
        validator: Any = None,
        scanner: Optional[PatternScanner] = None,
        registry: Optional[InFlightRegistry] = None,
    ):
        self.config = get_default_config()
        self.config.update(config or {})
        self.source_provider = source_provider or StaticSourceProvider()
        self.report_sink = report_sink or NullReportSink()
        self._analyzers = list(analyzers) if analyzers is not None else None
        self._validator = validator
        self.manager = manager if manager is not None or analyzers is not None else AnalyzerManager(self.config)
        self.scanner = scanner or PatternScanner()
        self.registry = registry or InFlightRegistry()
        self.matcher = FindingMatcher(
            similarity_threshold=float(self.config["similarity_threshold"]),
            min_substring_length=int(self.config["min_substring_length"]),
        )
        self.fallback = FallbackController(self.matcher)

    def _resolve(self, multi_source: bool) -> Tuple[List[Any], Any]:
        if self._analyzers is None:
            return self.manager.build(multi_source=multi_source)
        if multi_source:
            return list(self._analyzers), self._validator
        return self._analyzers[:1], None

    def _deadline_seconds(self, options: AuditOptions) -> float:
        deadline_ms = options.deadline_ms or int(self.config["deadline_ms"])
        return deadline_ms / 1000.0

    async def audit_contract(
        self, address: str, network: str, options: Optional[AuditOptions] = None
    ) -> ConsolidatedReport:
        """Audit the contract deployed at ``address`` on ``network``

        Concurrent calls with the same address, network and mode share one
        run and receive the same report. ``deadline_ms`` bounds the whole
        run: the validator gets whatever the analyzers left of it, and a
        validator still running when it expires yields the single-source
        tier.

        Returns:
            ConsolidatedReport; never raises (CancelledError excepted)
        """
        options = options or AuditOptions()
        key = request_key(address, network, options.multi_source)
        try:
            return await self.registry.run(key, lambda: self._audit_address(address, network, options))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            metadata = ContractMetadata(address=address or "", network=network or "")
            return self.fallback.total_failure(f"{type(e).__name__}: {e}", metadata)

    async def _audit_address(self, address: str, network: str, options: AuditOptions) -> ConsolidatedReport:
        metrics = AuditRunMetrics(address, network, "multi" if options.multi_source else "single")
        reason = "source code is not verified or is empty"
        try:
            source: Optional[ContractSource] = await self.source_provider.get_source(address, network)
        except Exception as e:
            logger.warning(f"Source provider failed for {address} on {network}: {type(e).__name__}: {e}")
            source, reason = None, str(e) or type(e).__name__

        metadata = ContractMetadata(
            name=source.contract_name if source else "Unknown",
            address=address or "",
            network=network or "",
            compiler_version=source.compiler_version if source else "Unknown",
        )
        if source is None or not source.usable:
            logger.warning(f"No usable source for {address or '<unknown>'} on {network or '-'}: {reason}")
            return await self._finish(self.fallback.source_unavailable(metadata, reason), metrics)

        report = await self._run_pipeline(source.source_code, metadata, options, metrics)
        return await self._finish(report, metrics)

    async def audit_source(
        self,
        source_code: Optional[str],
        metadata: Optional[ContractMetadata] = None,
        options: Optional[AuditOptions] = None,
    ) -> ConsolidatedReport:
        """Audit source text the caller already holds (no provider, no registry)"""
        options = options or AuditOptions()
        metadata = metadata or ContractMetadata(name=contract_name_from_source(source_code or ""))
        metrics = AuditRunMetrics(metadata.address, metadata.network, "multi" if options.multi_source else "single")
        if not source_code or not source_code.strip():
            return await self._finish(self.fallback.total_failure("no source code provided", metadata), metrics)
        report = await self._run_pipeline(source_code, metadata, options, metrics)
        return await self._finish(report, metrics)

    def audit_source_sync(self, source_code, metadata=None, options=None) -> ConsolidatedReport:
        return asyncio.run(self.audit_source(source_code, metadata, options))

    async def _run_pipeline(
        self,
        source_code: str,
        metadata: ContractMetadata,
        options: AuditOptions,
        metrics: AuditRunMetrics,
    ) -> ConsolidatedReport:
        try:
            metrics.record_source(source_code, int(self.config["max_code_size"]))
            analyzers, validator = self._resolve(options.multi_source)
            use_validator = options.use_validator and options.multi_source and validator is not None

            deadline = self._deadline_seconds(options)
            start = time.monotonic()
            orchestrator = AnalysisOrchestrator(scanner=self.scanner, metrics=metrics)
            results = await orchestrator.run(source_code, metadata, analyzers, deadline=deadline)
            reconciler = Reconciler(
                validator=validator if use_validator else None,
                matcher=self.matcher,
                fallback=self.fallback,
                metrics=metrics,
            )
            return await reconciler.reconcile(
                results,
                source_code,
                metadata,
                use_validator=use_validator,
                timeout=deadline - (time.monotonic() - start),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self.fallback.total_failure(f"{type(e).__name__}: {e}", metadata)

    async def _finish(self, report: ConsolidatedReport, metrics: AuditRunMetrics) -> ConsolidatedReport:
        metrics.record_report(report)
        run_metadata = metrics.finalize()
        metrics.log_summary()
        try:
            await self.report_sink.save(report, run_metadata)
        except Exception as e:
            logger.warning(f"Report sink failed: {type(e).__name__}: {e}")
        return report
