#!/usr/bin/env python3
"""
Response Extractor Module

Turn raw analyzer text into structured results. Analyzer backends are asked
for JSON but routinely wrap it in prose or markdown fences, use camelCase or
snake_case keys, or ignore the format entirely. Extraction tries, in order:

1. a fenced code block tagged ``json`` (then any fence whose body parses)
2. the first top-level ``{...}`` object carrying a findings key (stray
   braces in the surrounding prose are skipped)
3. a narrative fallback: one INFO finding holding the (truncated) text

Every outcome is a value. Empty text or a parsed payload with an unusable
shape yields ``AnalyzerFailure(kind="parse")``; nothing here raises.
"""

import json
import logging
import re
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from schemas import (
    AnalysisResult,
    AnalyzerFailure,
    Finding,
    FindingVerdict,
    ValidationDecision,
    ValidationVerdict,
)

__all__ = [
    "FINDINGS_KEYS",
    "VERDICT_KEYS",
    "ResponseExtractor",
    "balanced_json_regions",
    "coerce_score",
]

logger = logging.getLogger(__name__)

FINDINGS_KEYS = ("findings", "risks", "consolidatedRisks", "consolidated_risks", "vulnerabilities", "issues")
VERDICT_KEYS = ("validatedFindings", "validated_findings", "verdicts")
MISSED_KEYS = ("missedFindings", "missed_findings", "newFindings", "new_findings")

_FENCE_RE = re.compile(r"```[ \t]*([A-Za-z0-9_-]*)[ \t]*\r?\n?(.*?)```", re.DOTALL)
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_DECODER = json.JSONDecoder()

NARRATIVE_TITLE = "AI Analysis"


# ---------------------------------------------------------------------------
# Low-level helpers
# ---------------------------------------------------------------------------


def balanced_json_regions(text: str) -> Iterator[str]:
    """Yield each top-level JSON object embedded in ``text``.

    Scanning starts at every ``{`` not already inside a yielded object. A
    brace that does not open a parseable object (a stray brace in prose, a
    truncated payload) is skipped and the scan resumes at the next ``{``.
    """
    index = text.find("{")
    while index != -1:
        try:
            _, end = _DECODER.raw_decode(text, index)
        except json.JSONDecodeError:
            index = text.find("{", index + 1)
            continue
        yield text[index:end]
        index = text.find("{", end)


def coerce_score(value: Any) -> Optional[int]:
    """Coerce "85", 85.4, "85/100" to an int in [0, 100]; None if unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = _NUMBER_RE.search(str(value))
        if not match:
            return None
        number = float(match.group(0))
    return max(0, min(100, int(round(number))))


def _first(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value).strip()


def _string_list(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value.strip() else ()
    if isinstance(value, (list, tuple)):
        return tuple(_text(item) for item in value if _text(item))
    return ()


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class ResponseExtractor:
    """Parse raw analyzer output into AnalysisResult / ValidationVerdict values"""

    def __init__(self, narrative_max_chars: int = 500):
        self.narrative_max_chars = narrative_max_chars

    # -- payload location --------------------------------------------------

    def _fenced_payloads(self, raw_text: str) -> Iterator[Any]:
        fences = _FENCE_RE.findall(raw_text)
        tagged = [body for tag, body in fences if tag.lower() == "json"]
        untagged = [body for tag, body in fences if tag.lower() != "json"]
        for body in tagged + untagged:
            try:
                yield json.loads(body.strip())
            except json.JSONDecodeError:
                continue

    def _locate_payload(self, raw_text: str, keys: Sequence[str]) -> Tuple[str, Any]:
        """Return (strategy, payload) where strategy is fence, region, unusable or none."""
        for payload in self._fenced_payloads(raw_text):
            if isinstance(payload, (dict, list)):
                return "fence", payload

        parsed_any = False
        for region in balanced_json_regions(raw_text):
            try:
                payload = json.loads(region)
            except json.JSONDecodeError:
                continue
            parsed_any = True
            if isinstance(payload, dict) and any(key in payload for key in keys):
                return "region", payload

        if parsed_any:
            return "unusable", None
        return "none", None

    # -- normalization -----------------------------------------------------

    def _finding(self, item: Any, source_tag: str) -> Optional[Finding]:
        if isinstance(item, str):
            item = {"title": item}
        if not isinstance(item, dict):
            return None
        title = _text(_first(item, "title", "name", "type", "check"))
        description = _text(_first(item, "description", "details", "message"))
        if not title and not description:
            return None
        if not title:
            title = description[:80]
        return Finding(
            title=title,
            description=description,
            severity=_first(item, "severity", "level", "risk"),
            code_reference=_first(item, "codeReference", "code_reference", "location", "lineNumbers", "lines"),
            impact=_first(item, "impact"),
            recommendation=_first(item, "recommendation", "fix", "remediation", "mitigation"),
            source_tag=source_tag,
        )

    def _findings(self, items: Any, source_tag: str) -> Optional[Tuple[Finding, ...]]:
        if items is None:
            return ()
        if not isinstance(items, list):
            return None
        findings = []
        for item in items:
            finding = self._finding(item, source_tag)
            if finding is not None:
                findings.append(finding)
        return tuple(findings)

    def _narrative(self, raw_text: str, source_tag: str) -> AnalysisResult:
        text = raw_text.strip()
        description = text[: self.narrative_max_chars]
        if len(text) > self.narrative_max_chars:
            description += "..."
        return AnalysisResult(
            source=source_tag,
            overview="AI response format was not as expected",
            findings=(
                Finding(
                    title=NARRATIVE_TITLE,
                    description=description,
                    severity="INFO",
                    impact="Unable to properly parse AI response",
                    recommendation="Review the AI output manually",
                    source_tag=source_tag,
                ),
            ),
            low_confidence=True,
        )

    # -- public API --------------------------------------------------------

    def extract(self, raw_text: Optional[str], source_tag: str) -> Union[AnalysisResult, AnalyzerFailure]:
        """Extract an AnalysisResult from ``raw_text``

        Args:
            raw_text: Raw analyzer output
            source_tag: Source label of the analyzer that produced it

        Returns:
            AnalysisResult, or AnalyzerFailure(kind="parse") for empty or unusable output
        """
        if raw_text is None or not str(raw_text).strip():
            return AnalyzerFailure(source=source_tag, reason="empty response", kind="parse")
        raw_text = str(raw_text)

        try:
            strategy, payload = self._locate_payload(raw_text, FINDINGS_KEYS)
            if strategy == "none":
                logger.info(f"{source_tag}: no JSON in response, using narrative fallback")
                return self._narrative(raw_text, source_tag)
            if strategy == "unusable":
                return AnalyzerFailure(
                    source=source_tag, reason="structured output has no findings list", kind="parse"
                )

            if isinstance(payload, list):
                payload = {"findings": payload}
            if not any(key in payload for key in FINDINGS_KEYS):
                return AnalyzerFailure(
                    source=source_tag, reason="structured output has no findings list", kind="parse"
                )

            findings = self._findings(_first(payload, *FINDINGS_KEYS), source_tag)
            if findings is None:
                return AnalyzerFailure(source=source_tag, reason="findings is not a list", kind="parse")

            return AnalysisResult(
                source=source_tag,
                overview=_text(_first(payload, "overview", "summary", "overallAssessment")),
                contract_type=_text(_first(payload, "contractType", "contract_type")),
                key_features=_string_list(_first(payload, "keyFeatures", "key_features")),
                findings=findings,
                security_score=coerce_score(_first(payload, "securityScore", "security_score", "score")),
                risk_level=_first(payload, "riskLevel", "risk_level"),
                explanation=_text(_first(payload, "explanation", "analysisDiscussion")),
            )
        except (ValueError, TypeError) as e:
            # pydantic ValidationError subclasses ValueError
            logger.warning(f"{source_tag}: could not normalize response: {e}")
            return AnalyzerFailure(source=source_tag, reason=f"unusable structured output: {e}", kind="parse")

    def _verdict(self, item: Any, source_tag: str) -> Optional[FindingVerdict]:
        if not isinstance(item, dict):
            return None
        decision = ValidationDecision.normalize(_first(item, "validationResult", "decision", "verdict", "result"))
        if decision is None:
            return None
        original = _first(item, "originalFinding", "original_finding", default={})
        original_title = ""
        finding_id = _text(_first(item, "findingId", "finding_id", "id"))
        if isinstance(original, dict):
            original_title = _text(_first(original, "title", "name"))
            finding_id = finding_id or _text(_first(original, "id", "findingId"))
        elif original:
            original_title = _text(original)

        modified = None
        if decision is ValidationDecision.MODIFY:
            modified = self._finding(_first(item, "modifiedFinding", "modified_finding"), source_tag)

        return FindingVerdict(
            finding_id=finding_id,
            original_title=original_title,
            decision=decision,
            reasoning=_text(_first(item, "reasoning", "reason")),
            modified_finding=modified,
        )

    def extract_verdict(self, raw_text: Optional[str], source_tag: str) -> Union[ValidationVerdict, AnalyzerFailure]:
        """Extract a ValidationVerdict from validator output.

        There is no narrative fallback here: prose from the validator cannot be
        applied to findings, so it is a parse failure.
        """
        if raw_text is None or not str(raw_text).strip():
            return AnalyzerFailure(source=source_tag, reason="empty validator response", kind="parse")

        try:
            strategy, payload = self._locate_payload(str(raw_text), VERDICT_KEYS + MISSED_KEYS)
            if not isinstance(payload, dict) or not any(key in payload for key in VERDICT_KEYS + MISSED_KEYS):
                return AnalyzerFailure(
                    source=source_tag, reason=f"validator output not usable ({strategy})", kind="parse"
                )

            raw_verdicts = _first(payload, *VERDICT_KEYS, default=[])
            if not isinstance(raw_verdicts, list):
                return AnalyzerFailure(source=source_tag, reason="validatedFindings is not a list", kind="parse")
            verdicts: List[FindingVerdict] = []
            for item in raw_verdicts:
                verdict = self._verdict(item, source_tag)
                if verdict is not None:
                    verdicts.append(verdict)

            missed = self._findings(_first(payload, *MISSED_KEYS), source_tag)
            if missed is None:
                return AnalyzerFailure(source=source_tag, reason="missedFindings is not a list", kind="parse")

            return ValidationVerdict(
                source=source_tag,
                verdicts=tuple(verdicts),
                missed_findings=missed,
                overview=_text(_first(payload, "overview")),
                contract_type=_text(_first(payload, "contractType", "contract_type")),
                key_features=_string_list(_first(payload, "keyFeatures", "key_features")),
                analysis_discussion=_text(_first(payload, "analysisDiscussion", "analysis_discussion", "discussion")),
                security_score=coerce_score(_first(payload, "securityScore", "security_score")),
            )
        except (ValueError, TypeError) as e:
            logger.warning(f"{source_tag}: could not normalize validator response: {e}")
            return AnalyzerFailure(source=source_tag, reason=f"unusable validator output: {e}", kind="parse")
