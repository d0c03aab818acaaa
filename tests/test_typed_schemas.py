"""
Tests for the typed audit schemas (pydantic models)

Covers vocabulary normalization, finding defaults, result/failure
invariants, immutability and report validation.
"""

import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "scripts"))

from schemas import (
    IMPACT_PLACEHOLDER,
    RECOMMENDATION_PLACEHOLDER,
    AnalysisResult,
    AnalyzerFailure,
    AuditOptions,
    ConsolidatedReport,
    ContractSource,
    FallbackTier,
    Finding,
    RiskLevel,
    Severity,
    ValidationDecision,
)


# ============================================================================
# Vocabularies
# ============================================================================


class TestSeverity:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("critical", Severity.CRITICAL),
            ("High", Severity.HIGH),
            ("moderate", Severity.MEDIUM),
            ("Informational", Severity.INFO),
            ("minor", Severity.LOW),
            ("bogus", Severity.INFO),
            (None, Severity.INFO),
        ],
    )
    def test_normalize(self, raw, expected):
        assert Severity.normalize(raw) is expected

    def test_rank_orders_most_severe_first(self):
        ranks = [s.rank for s in (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW, Severity.INFO)]
        assert ranks == sorted(ranks)


class TestRiskLevel:
    @pytest.mark.parametrize("raw", ["Low Risk", "low_risk", "LOWRISK", "low-risk"])
    def test_normalize_variants(self, raw):
        assert RiskLevel.normalize(raw) is RiskLevel.LOW_RISK

    def test_unknown(self):
        assert RiskLevel.normalize("catastrophic") is RiskLevel.UNKNOWN
        assert RiskLevel.normalize(None) is RiskLevel.UNKNOWN


class TestValidationDecision:
    def test_variants(self):
        assert ValidationDecision.normalize("confirmed") is ValidationDecision.CONFIRM
        assert ValidationDecision.normalize("DISPUTED") is ValidationDecision.DISPUTE
        assert ValidationDecision.normalize(" modify ") is ValidationDecision.MODIFY
        assert ValidationDecision.normalize("maybe") is None
        assert ValidationDecision.normalize(None) is None


# ============================================================================
# Finding
# ============================================================================


class TestFinding:
    def test_placeholders(self):
        finding = Finding(title="Reentrancy", impact="  ", recommendation=None)
        assert finding.impact == IMPACT_PLACEHOLDER
        assert finding.recommendation == RECOMMENDATION_PLACEHOLDER
        assert finding.severity is Severity.INFO
        assert finding.consensus_count == 1

    def test_severity_string_normalized(self):
        assert Finding(title="x", severity="high").severity is Severity.HIGH

    def test_code_reference_list_joined(self):
        finding = Finding(title="x", code_reference=["withdraw", "deposit"])
        assert finding.code_reference == "withdraw, deposit"
        assert Finding(title="x", code_reference="  ").code_reference is None

    def test_sources_split(self):
        assert Finding(title="x", source_tag="openai, deepseek,").sources == ("openai", "deepseek")

    def test_consensus_must_be_positive(self):
        with pytest.raises(ValidationError):
            Finding(title="x", consensus_count=0)

    def test_frozen(self):
        finding = Finding(title="x")
        with pytest.raises(ValidationError):
            finding.title = "y"


# ============================================================================
# Analyzer outcomes
# ============================================================================


class TestAnalysisResult:
    def test_error_with_findings_rejected(self):
        with pytest.raises(ValidationError):
            AnalysisResult(source="openai", error="timeout", findings=(Finding(title="x"),))

    def test_succeeded(self):
        assert AnalysisResult(source="openai").succeeded
        assert not AnalysisResult(source="openai", error="boom").succeeded

    def test_risk_level_normalized(self):
        assert AnalysisResult(source="openai", risk_level="medium_risk").risk_level is RiskLevel.MEDIUM_RISK

    def test_score_bounds(self):
        with pytest.raises(ValidationError):
            AnalysisResult(source="openai", security_score=101)


class TestAnalyzerFailure:
    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            AnalyzerFailure(source="openai", reason="x", kind="mystery")

    def test_to_result(self):
        result = AnalyzerFailure(source="mistral", reason="read timed out", kind="timeout").to_result()
        assert result.source == "mistral"
        assert result.error == "timeout: read timed out"
        assert result.findings == ()


# ============================================================================
# Request and report
# ============================================================================


class TestContractSource:
    def test_usable(self):
        assert ContractSource(source_code="contract A {}").usable
        assert not ContractSource(source_code="   ").usable
        assert not ContractSource(source_code="contract A {}", verified=False).usable


class TestAuditOptions:
    def test_defaults(self):
        options = AuditOptions()
        assert options.use_validator and options.multi_source
        assert options.deadline_ms is None

    def test_deadline_positive(self):
        with pytest.raises(ValidationError):
            AuditOptions(deadline_ms=0)


class TestConsolidatedReport:
    def test_unknown_risk_rejected(self):
        with pytest.raises(ValidationError):
            ConsolidatedReport(security_score=50, risk_level=RiskLevel.UNKNOWN)

    def test_findings_by_severity(self):
        report = ConsolidatedReport(
            security_score=70,
            risk_level=RiskLevel.MEDIUM_RISK,
            findings=(Finding(title="a", severity="HIGH"), Finding(title="b", severity="HIGH"), Finding(title="c")),
        )
        assert report.findings_by_severity() == {"CRITICAL": 0, "HIGH": 2, "MEDIUM": 0, "LOW": 0, "INFO": 1}

    def test_json_dump(self):
        report = ConsolidatedReport(security_score=95, risk_level=RiskLevel.SAFE, tier=FallbackTier.PATTERN_ONLY)
        data = report.model_dump(mode="json")
        assert data["risk_level"] == "Safe"
        assert data["tier"] == "pattern_only"
        assert data["error"] is None
