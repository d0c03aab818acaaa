"""
End-to-end tests for contract_auditor.py

Pipeline wiring with replayed analyzer responses: pattern-only runs, the
shared deadline, full validator reconciliation, source failures, report
sinks and request de-duplication.
"""

import asyncio
import json
import sys
import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))

from analyzers import StaticResponseAnalyzer
from contract_auditor import (
    ContractAuditor,
    FileSourceProvider,
    StaticSourceProvider,
    contract_name_from_source,
)
from fallback_controller import NO_AI_ANALYSIS_MESSAGE
from schemas import AuditOptions, ContractSource, FallbackTier, RiskLevel, Severity

TX_ORIGIN_CONTRACT = """pragma solidity ^0.8.0;

contract Wallet {
    address public owner;

    function transferTo(address payable dest, uint256 amount) public {
        require(tx.origin == owner);
        dest.transfer(amount);
    }
}
"""

CLEAN_CONTRACT = """pragma solidity ^0.8.0;

contract Vault {
    mapping(address => uint256) public balances;

    function deposit() external payable {
        balances[msg.sender] += msg.value;
    }
}
"""


def _analysis(title, severity, score):
    return json.dumps(
        {
            "overview": "Simple vault",
            "contractType": "Vault",
            "findings": [{"title": title, "severity": severity, "description": "details"}],
            "securityScore": score,
        }
    )


def _analyzers(delay=0.0):
    return [
        StaticResponseAnalyzer("openai", response=_analysis("Reentrancy in withdraw", "CRITICAL", 70), delay=delay),
        StaticResponseAnalyzer("anthropic", response=_analysis("Reentrancy in withdraw", "CRITICAL", 80), delay=delay),
    ]


def _validator():
    payload = {
        "validatedFindings": [
            {"findingId": "F1", "validationResult": "CONFIRM"},
            {"findingId": "F2", "validationResult": "CONFIRM"},
        ],
        "missedFindings": [],
    }
    return StaticResponseAnalyzer("openai", validation_response=json.dumps(payload))


class CountingProvider:
    def __init__(self, source):
        self.source = source
        self.calls = 0

    async def get_source(self, address, network):
        self.calls += 1
        await asyncio.sleep(0.01)
        return self.source


class TestPatternOnly:
    def test_no_analyzers_configured(self):
        auditor = ContractAuditor(analyzers=[])
        report = auditor.audit_source_sync(TX_ORIGIN_CONTRACT)

        assert report.contract_name == "Wallet"
        assert report.tier is FallbackTier.PATTERN_ONLY
        assert report.degraded
        assert len(report.findings) == 1
        assert report.findings[0].severity is Severity.MEDIUM
        assert report.security_score == 95
        assert report.risk_level is RiskLevel.SAFE

    def test_deadline_abandons_slow_analyzers(self):
        analyzers = _analyzers(delay=5)
        auditor = ContractAuditor(analyzers=analyzers, validator=_validator())
        report = auditor.audit_source_sync(TX_ORIGIN_CONTRACT, options=AuditOptions(deadline_ms=50))

        assert report.tier is FallbackTier.PATTERN_ONLY
        assert report.degraded
        assert report.analysis_discussion == NO_AI_ANALYSIS_MESSAGE
        assert set(report.failed_sources) == {"openai", "anthropic"}
        assert report.failed_sources["openai"].startswith("timeout")


class TestFullReconciliation:
    def setup_method(self):
        self.provider = StaticSourceProvider(
            {"0xABC": ContractSource(source_code=CLEAN_CONTRACT, contract_name="Vault", compiler_version="0.8.19")}
        )

    def test_shared_finding_has_consensus(self):
        auditor = ContractAuditor(source_provider=self.provider, analyzers=_analyzers(), validator=_validator())
        report = asyncio.run(auditor.audit_contract("0xabc", "mainnet"))

        assert report.contract_name == "Vault"
        assert report.tier is FallbackTier.FULL
        assert not report.degraded
        assert len(report.findings) == 1
        assert report.findings[0].consensus_count == 2
        # 100 - 20 = 80, averaged with mean(70, 80) = 75 -> 77.5 -> 78
        assert report.security_score == 78
        assert report.risk_level is RiskLevel.LOW_RISK
        assert set(report.sources_used) == {"pattern-scanner", "openai", "anthropic"}

    def test_single_source_mode(self):
        analyzers = _analyzers()
        validator = _validator()
        auditor = ContractAuditor(source_provider=self.provider, analyzers=analyzers, validator=validator)
        report = asyncio.run(auditor.audit_contract("0xabc", "mainnet", AuditOptions(multi_source=False)))

        assert report.tier is FallbackTier.SINGLE_SOURCE
        assert report.sources_used == ("openai",)
        assert analyzers[1].calls == 0
        assert validator.calls == 0

    def test_validator_disabled_per_request(self):
        validator = _validator()
        auditor = ContractAuditor(source_provider=self.provider, analyzers=_analyzers(), validator=validator)
        report = asyncio.run(auditor.audit_contract("0xabc", "mainnet", AuditOptions(use_validator=False)))

        assert report.tier is FallbackTier.SINGLE_SOURCE
        # best self-score wins
        assert report.sources_used == ("anthropic",)
        assert validator.calls == 0

    def test_validator_limited_to_remaining_deadline(self):
        payload = {"validatedFindings": [{"findingId": "F1", "validationResult": "CONFIRM"}]}
        validator = StaticResponseAnalyzer("openai", validation_response=json.dumps(payload), delay=5)
        auditor = ContractAuditor(source_provider=self.provider, analyzers=_analyzers(), validator=validator)

        start = time.monotonic()
        report = asyncio.run(auditor.audit_contract("0xabc", "mainnet", AuditOptions(deadline_ms=200)))

        assert time.monotonic() - start < 2
        assert validator.calls == 1
        assert report.tier is FallbackTier.SINGLE_SOURCE
        assert report.degraded
        assert "validator failed: timeout" in report.analysis_discussion


class TestSourceFailures:
    def test_unverified_source(self):
        analyzers = _analyzers()
        auditor = ContractAuditor(source_provider=StaticSourceProvider(), analyzers=analyzers)
        report = asyncio.run(auditor.audit_contract("0xdead", "mainnet"))

        assert report.tier is FallbackTier.SOURCE_UNAVAILABLE
        assert report.security_score == 0
        assert report.risk_level is RiskLevel.HIGH_RISK
        assert len(report.findings) == 1
        assert report.findings[0].severity is Severity.INFO
        assert analyzers[0].calls == 0

    def test_provider_error(self):
        provider = MagicMock()
        provider.get_source = AsyncMock(side_effect=RuntimeError("explorer down"))
        auditor = ContractAuditor(source_provider=provider, analyzers=[])
        report = asyncio.run(auditor.audit_contract("0xabc", "mainnet"))

        assert report.tier is FallbackTier.SOURCE_UNAVAILABLE
        assert "explorer down" in report.analysis_discussion

    def test_empty_source_text(self):
        report = ContractAuditor(analyzers=[]).audit_source_sync("   ")
        assert report.tier is FallbackTier.TOTAL_FAILURE
        assert report.error == "no source code provided"

    def test_file_provider_missing_file(self, tmp_path):
        auditor = ContractAuditor(source_provider=FileSourceProvider(tmp_path / "Missing.sol"), analyzers=[])
        report = asyncio.run(auditor.audit_contract("", "local"))
        assert report.tier is FallbackTier.SOURCE_UNAVAILABLE
        assert "Missing.sol" in report.analysis_discussion


class TestReportSink:
    def test_sink_receives_run_metadata(self):
        sink = MagicMock()
        sink.save = AsyncMock()
        ContractAuditor(report_sink=sink, analyzers=[]).audit_source_sync(TX_ORIGIN_CONTRACT)

        report, run_metadata = sink.save.call_args.args
        assert report.tier is FallbackTier.PATTERN_ONLY
        assert run_metadata["tier"] == "pattern_only"
        assert run_metadata["findings"]["medium"] == 1

    def test_sink_failure_does_not_lose_report(self):
        sink = MagicMock()
        sink.save = AsyncMock(side_effect=OSError("disk full"))
        report = ContractAuditor(report_sink=sink, analyzers=[]).audit_source_sync(TX_ORIGIN_CONTRACT)
        assert report.security_score == 95


class TestRequestDeduplication:
    def test_concurrent_requests_share_one_run(self):
        provider = CountingProvider(ContractSource(source_code=TX_ORIGIN_CONTRACT, contract_name="Wallet"))
        auditor = ContractAuditor(source_provider=provider, analyzers=[])

        async def both():
            return await asyncio.gather(
                auditor.audit_contract("0xABC", "Mainnet"),
                auditor.audit_contract("0xabc", "mainnet"),
            )

        first, second = asyncio.run(both())
        assert provider.calls == 1
        assert first is second
        assert len(auditor.registry) == 0

    def test_modes_do_not_share(self):
        provider = CountingProvider(ContractSource(source_code=TX_ORIGIN_CONTRACT))
        auditor = ContractAuditor(source_provider=provider, analyzers=[])

        async def both():
            return await asyncio.gather(
                auditor.audit_contract("0xabc", "mainnet"),
                auditor.audit_contract("0xabc", "mainnet", AuditOptions(multi_source=False)),
            )

        asyncio.run(both())
        assert provider.calls == 2


def test_contract_name_from_source():
    source = "contract Base {}\nabstract contract Mid {}\ncontract Token is Base {}\n"
    assert contract_name_from_source(source) == "Token"
    assert contract_name_from_source("library L {}", default="L") == "L"
