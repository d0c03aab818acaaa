"""
Audit Schemas - Typed models for data flowing between reconciliation stages.

Every stage boundary (analyzer adapter -> extractor -> reconciler -> scorer
-> report) passes one of these models instead of a loose dict. Models are
frozen: a ConsolidatedReport handed to a caller is a value and cannot be
mutated afterwards.

Hierarchy:
    Severity / RiskLevel / FallbackTier   - closed vocabularies
    Finding                               - one security issue
    AnalysisResult                        - one analyzer's structured output
    AnalyzerFailure                       - one analyzer's failure, as a value
    FindingVerdict / ValidationVerdict    - validator ("judge") output
    ContractMetadata / ContractSource     - what is being audited
    AuditOptions                          - per-request switches
    ConsolidatedReport                    - final caller-facing output
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

IMPACT_PLACEHOLDER = "Not specified"
RECOMMENDATION_PLACEHOLDER = "Not provided"

PATTERN_SCANNER_SOURCE = "pattern-scanner"


# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------


class Severity(str, Enum):
    """Finding severity, most severe first."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"

    @property
    def rank(self) -> int:
        """Lower rank is more severe."""
        return _SEVERITY_ORDER.index(self)

    @classmethod
    def normalize(cls, value: Any) -> "Severity":
        """Map free-form analyzer severities onto the closed set.

        Unrecognized or missing values become INFO.
        """
        if isinstance(value, Severity):
            return value
        if value is None:
            return cls.INFO
        key = re.sub(r"[\s_\-]+", "", str(value)).lower()
        return _SEVERITY_ALIASES.get(key, cls.INFO)


_SEVERITY_ORDER = [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW, Severity.INFO]

_SEVERITY_ALIASES: Dict[str, Severity] = {
    "critical": Severity.CRITICAL,
    "crit": Severity.CRITICAL,
    "severe": Severity.CRITICAL,
    "high": Severity.HIGH,
    "major": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "med": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "warning": Severity.MEDIUM,
    "low": Severity.LOW,
    "minor": Severity.LOW,
    "info": Severity.INFO,
    "informational": Severity.INFO,
    "information": Severity.INFO,
    "note": Severity.INFO,
    "optimization": Severity.INFO,
}


class RiskLevel(str, Enum):
    """Discrete risk bucket derived from a 0-100 security score."""

    SAFE = "Safe"
    LOW_RISK = "Low Risk"
    MEDIUM_RISK = "Medium Risk"
    HIGH_RISK = "High Risk"
    UNKNOWN = "Unknown"

    @classmethod
    def normalize(cls, value: Any) -> "RiskLevel":
        """Accept "LowRisk", "low_risk", "LOW RISK" etc.; anything else is UNKNOWN."""
        if isinstance(value, RiskLevel):
            return value
        if value is None:
            return cls.UNKNOWN
        key = re.sub(r"[\s_\-]+", "", str(value)).lower()
        for level in cls:
            if level.value.replace(" ", "").lower() == key:
                return level
        return cls.UNKNOWN


class FallbackTier(str, Enum):
    """Which degradation tier produced a report."""

    FULL = "full"
    SINGLE_SOURCE = "single_source"
    PATTERN_ONLY = "pattern_only"
    SOURCE_UNAVAILABLE = "source_unavailable"
    TOTAL_FAILURE = "total_failure"


class ValidationDecision(str, Enum):
    """Validator decision on one candidate finding."""

    CONFIRM = "CONFIRM"
    DISPUTE = "DISPUTE"
    MODIFY = "MODIFY"

    @classmethod
    def normalize(cls, value: Any) -> Optional["ValidationDecision"]:
        if value is None:
            return None
        text = str(value).strip().upper()
        for decision in cls:
            # "CONFIRMED", "DISPUTED", "MODIFIED" are common variants
            if text.startswith(decision.value):
                return decision
        return None


# ---------------------------------------------------------------------------
# Findings and analyzer results
# ---------------------------------------------------------------------------


class Finding(BaseModel):
    """One security issue, as reported by a source or after merging."""

    model_config = ConfigDict(frozen=True)

    title: str
    description: str = ""
    severity: Severity = Severity.INFO
    code_reference: Optional[str] = None
    impact: str = IMPACT_PLACEHOLDER
    recommendation: str = RECOMMENDATION_PLACEHOLDER
    source_tag: str = ""
    consensus_count: int = Field(default=1, ge=1)

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, v: Any) -> Severity:
        return Severity.normalize(v)

    @field_validator("impact", mode="before")
    @classmethod
    def default_impact(cls, v: Any) -> str:
        text = "" if v is None else str(v).strip()
        return text or IMPACT_PLACEHOLDER

    @field_validator("recommendation", mode="before")
    @classmethod
    def default_recommendation(cls, v: Any) -> str:
        text = "" if v is None else str(v).strip()
        return text or RECOMMENDATION_PLACEHOLDER

    @field_validator("code_reference", mode="before")
    @classmethod
    def stringify_code_reference(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        if isinstance(v, (list, tuple)):
            v = ", ".join(str(item) for item in v)
        text = str(v).strip()
        return text or None

    @property
    def sources(self) -> Tuple[str, ...]:
        """Distinct source labels encoded in ``source_tag``."""
        return tuple(tag.strip() for tag in self.source_tag.split(",") if tag.strip())


class AnalysisResult(BaseModel):
    """Structured output of one analyzer (or the pattern scanner)."""

    model_config = ConfigDict(frozen=True)

    source: str
    overview: str = ""
    contract_type: str = ""
    key_features: Tuple[str, ...] = ()
    findings: Tuple[Finding, ...] = ()
    security_score: Optional[int] = Field(default=None, ge=0, le=100)
    risk_level: Optional[RiskLevel] = None
    explanation: str = ""
    low_confidence: bool = False
    duration_seconds: Optional[float] = None
    error: Optional[str] = None

    @field_validator("risk_level", mode="before")
    @classmethod
    def normalize_risk_level(cls, v: Any) -> Optional[RiskLevel]:
        if v is None:
            return None
        return RiskLevel.normalize(v)

    @model_validator(mode="after")
    def failed_results_have_no_findings(self) -> "AnalysisResult":
        if self.error is not None and self.findings:
            raise ValueError("an AnalysisResult with an error must not carry findings")
        return self

    @property
    def succeeded(self) -> bool:
        return self.error is None


class AnalyzerFailure(BaseModel):
    """Failure of one analyzer call, returned instead of raised."""

    model_config = ConfigDict(frozen=True)

    source: str
    reason: str
    kind: str = "transport"
    duration_seconds: Optional[float] = None

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v: str) -> str:
        allowed = {
            "timeout",
            "transport",
            "rate_limit",
            "auth",
            "config",
            "parse",
            "unavailable",
            "permanent",
        }
        if v not in allowed:
            raise ValueError(f"kind must be one of {sorted(allowed)}, got '{v}'")
        return v

    def to_result(self) -> AnalysisResult:
        return AnalysisResult(
            source=self.source,
            error=f"{self.kind}: {self.reason}",
            duration_seconds=self.duration_seconds,
        )


AnalyzerOutcome = Union[AnalysisResult, AnalyzerFailure]


# ---------------------------------------------------------------------------
# Validator output
# ---------------------------------------------------------------------------


class FindingVerdict(BaseModel):
    """Validator decision on a single numbered candidate finding."""

    model_config = ConfigDict(frozen=True)

    finding_id: str = ""
    original_title: str = ""
    decision: ValidationDecision
    reasoning: str = ""
    modified_finding: Optional[Finding] = None


class ValidationVerdict(BaseModel):
    """Everything the validator returned in one reconciliation call."""

    model_config = ConfigDict(frozen=True)

    source: str
    verdicts: Tuple[FindingVerdict, ...] = ()
    missed_findings: Tuple[Finding, ...] = ()
    overview: str = ""
    contract_type: str = ""
    key_features: Tuple[str, ...] = ()
    analysis_discussion: str = ""
    security_score: Optional[int] = Field(default=None, ge=0, le=100)


# ---------------------------------------------------------------------------
# Request side
# ---------------------------------------------------------------------------


class ContractMetadata(BaseModel):
    """What is known about the contract besides its source."""

    model_config = ConfigDict(frozen=True)

    name: str = "Unknown"
    address: str = ""
    network: str = ""
    compiler_version: str = "Unknown"
    contract_type: str = ""


class ContractSource(BaseModel):
    """Source provider result."""

    model_config = ConfigDict(frozen=True)

    source_code: str = ""
    contract_name: str = "Unknown"
    compiler_version: str = "Unknown"
    verified: bool = True

    @property
    def usable(self) -> bool:
        return self.verified and bool(self.source_code.strip())


class AuditOptions(BaseModel):
    """Per-request switches."""

    model_config = ConfigDict(frozen=True)

    use_validator: bool = True
    deadline_ms: Optional[int] = Field(default=None, gt=0)
    multi_source: bool = True


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class ConsolidatedReport(BaseModel):
    """Final, immutable audit report."""

    model_config = ConfigDict(frozen=True)

    contract_name: str = "Unknown"
    overview: str = ""
    contract_type: str = ""
    key_features: Tuple[str, ...] = ()
    analysis_discussion: str = ""
    findings: Tuple[Finding, ...] = ()
    security_score: int = Field(ge=0, le=100)
    risk_level: RiskLevel
    degraded: bool = False
    tier: FallbackTier = FallbackTier.FULL
    sources_used: Tuple[str, ...] = ()
    failed_sources: Dict[str, str] = Field(default_factory=dict)
    error: Optional[str] = None

    @field_validator("risk_level")
    @classmethod
    def risk_level_is_known(cls, v: RiskLevel) -> RiskLevel:
        if v is RiskLevel.UNKNOWN:
            raise ValueError("a report must carry a concrete risk level")
        return v

    def findings_by_severity(self) -> Dict[str, int]:
        counts = {severity.value: 0 for severity in Severity}
        for finding in self.findings:
            counts[finding.severity.value] += 1
        return counts
